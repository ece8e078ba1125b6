"""
Consultas agregadas do dashboard e da evolucao de cada fornecedor.

As notas sao gravadas de 1 a 5 e exibidas de 0 a 100 (nota x 20).
"""
from datetime import datetime

import pandas as pd

from models import db, Fornecedor, Criterio, Qualificacao, QualificacaoCriterio
from utils import FATOR_ESCALA_SCORE, arredondar

LIMITE_RISCO = 70
MESES_ABREVIADOS = ('jan', 'fev', 'mar', 'abr', 'mai', 'jun',
                    'jul', 'ago', 'set', 'out', 'nov', 'dez')


def _rotulo_mes(periodo):
    return f'{MESES_ABREVIADOS[periodo.month - 1]}/{periodo.year % 100:02d}'


def _escala(serie):
    return (serie * FATOR_ESCALA_SCORE).apply(arredondar)


def _notas_concluidas(desde=None):
    consulta = (
        db.session.query(QualificacaoCriterio.score, Qualificacao.criado_em)
        .join(Qualificacao, QualificacaoCriterio.documento_id == Qualificacao.id)
        .filter(Qualificacao.status == 'concluido')
    )
    if desde is not None:
        consulta = consulta.filter(Qualificacao.criado_em >= desde)
    return pd.DataFrame([tuple(linha) for linha in consulta.all()], columns=['score', 'criado_em'])


def scores_mensais(agora=None, meses=12):
    """
    Media mensal das notas de qualificacoes concluidas nos ultimos meses.

    Meses sem avaliacao aparecem com media 0 para manter o eixo continuo.

    Returns:
        Lista [{"month": "jan/25", "avg_score": 84}, ...] do mais antigo ao atual
    """
    agora = agora or datetime.utcnow()
    atual = pd.Period(agora, freq='M')
    periodos = [atual - i for i in range(meses - 1, -1, -1)]
    df = _notas_concluidas(desde=periodos[0].start_time.to_pydatetime())

    medias = {}
    if not df.empty:
        df['periodo'] = pd.to_datetime(df['criado_em']).dt.to_period('M')
        medias = _escala(df.groupby('periodo')['score'].mean()).to_dict()

    return [
        {'month': _rotulo_mes(periodo), 'avg_score': int(medias.get(periodo, 0))}
        for periodo in periodos
    ]


def _consulta_avaliados():
    return Fornecedor.query.filter(
        Fornecedor.situacao == 'ativo',
        Fornecedor.total_avaliacoes > 0,
    )


def _ranking(fornecedores):
    return [
        {'id': f.id, 'nome': f.nome, 'score_atual': f.score_atual or 0}
        for f in fornecedores
    ]


def melhores_fornecedores(limite=5):
    consulta = _consulta_avaliados().order_by(Fornecedor.score_atual.desc())
    return _ranking(consulta.limit(limite).all())


def fornecedores_em_risco(limite=5):
    consulta = (
        _consulta_avaliados()
        .filter(Fornecedor.score_atual < LIMITE_RISCO)
        .order_by(Fornecedor.score_atual.asc())
    )
    return _ranking(consulta.limit(limite).all())


def criterios_menor_score(limite=4):
    linhas = (
        db.session.query(QualificacaoCriterio.criterio_id, QualificacaoCriterio.score, Criterio.descricao)
        .join(Criterio, QualificacaoCriterio.criterio_id == Criterio.id)
        .all()
    )
    df = pd.DataFrame([tuple(linha) for linha in linhas], columns=['criterio_id', 'score', 'descricao'])
    if df.empty:
        return []
    agrupado = df.groupby(['criterio_id', 'descricao'], as_index=False)['score'].mean()
    agrupado['avg_score'] = _escala(agrupado['score'])
    agrupado = agrupado.sort_values(['avg_score', 'criterio_id'], kind='stable').head(limite)
    return [
        {'id': int(linha.criterio_id), 'descricao': linha.descricao, 'avg_score': int(linha.avg_score)}
        for linha in agrupado.itertuples()
    ]


def estatisticas(agora=None):
    agora = agora or datetime.utcnow()
    inicio_mes = agora.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    total_fornecedores = Fornecedor.query.filter_by(situacao='ativo').count()
    qualificacoes_mes = Qualificacao.query.filter(Qualificacao.criado_em >= inicio_mes).count()

    scores = pd.Series([f.score_atual or 0 for f in _consulta_avaliados().all()], dtype='float64')
    score_medio = arredondar(scores.mean()) if not scores.empty else 0

    fornecedores_risco = _consulta_avaliados().filter(Fornecedor.score_atual < LIMITE_RISCO).count()

    return {
        'totalFornecedores': total_fornecedores,
        'qualificacoesMes': qualificacoes_mes,
        'scoreMedio': score_medio,
        'fornecedoresRisco': fornecedores_risco,
    }


def montar_dashboard(agora=None):
    return {
        'stats': estatisticas(agora),
        'monthlyScores': scores_mensais(agora),
        'topSuppliers': melhores_fornecedores(),
        'bottomSuppliers': fornecedores_em_risco(),
        'lowScoreCriteria': criterios_menor_score(),
    }


def desempenho_fornecedor(fornecedor):
    """
    Evolucao das notas de um fornecedor.

    Returns:
        Dicionario com "documentos" (media de cada qualificacao, em ordem de
        recebimento) e "criterios_scores" (media por criterio, da pior para a
        melhor)
    """
    qualificacoes = (
        Qualificacao.query.filter_by(fornecedor_id=fornecedor.id)
        .order_by(Qualificacao.data_recebimento.asc(), Qualificacao.codigo.asc())
        .all()
    )
    documentos = []
    for qualificacao in qualificacoes:
        notas = pd.Series([a.score for a in qualificacao.avaliacoes], dtype='float64')
        documentos.append({
            'id': qualificacao.id,
            'codigo': qualificacao.codigo,
            'data_recebimento': qualificacao.data_recebimento.isoformat(),
            'status': qualificacao.status,
            'avg_score': arredondar(notas.mean() * FATOR_ESCALA_SCORE) if not notas.empty else 0,
        })

    linhas = (
        db.session.query(Criterio.codigo, Criterio.descricao, QualificacaoCriterio.score)
        .join(QualificacaoCriterio, QualificacaoCriterio.criterio_id == Criterio.id)
        .join(Qualificacao, QualificacaoCriterio.documento_id == Qualificacao.id)
        .filter(Qualificacao.fornecedor_id == fornecedor.id)
        .all()
    )
    df = pd.DataFrame([tuple(linha) for linha in linhas], columns=['codigo', 'descricao', 'score'])
    criterios = []
    if not df.empty:
        agrupado = df.groupby(['codigo', 'descricao'], as_index=False)['score'].mean()
        agrupado['avg_score'] = _escala(agrupado['score'])
        agrupado = agrupado.sort_values(['avg_score', 'codigo'], kind='stable')
        criterios = [
            {'codigo': linha.codigo, 'descricao': linha.descricao, 'avg_score': int(linha.avg_score)}
            for linha in agrupado.itertuples()
        ]

    return {
        'fornecedor_id': fornecedor.id,
        'score_atual': fornecedor.score_atual,
        'documentos': documentos,
        'criterios_scores': criterios,
    }
