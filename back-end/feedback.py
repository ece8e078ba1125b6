"""
Relatorio de qualificacao enviado por e-mail aos contatos do fornecedor,
com sugestoes de melhoria geradas por IA para os criterios de menor nota.
"""
from datetime import datetime, timedelta
from html import escape

import requests
from flask import current_app

from models import db, Fornecedor, FornecedorContato, Qualificacao
from utils import enviar_email, media, arredondar, FATOR_ESCALA_SCORE

LIMITE_HISTORICO = 20
LIMITE_CRITERIOS = 5
TEXTO_SEM_SUGESTOES = 'Não foi possível gerar sugestões.'


class FeedbackError(Exception):
    """Condicao de negocio que impede o envio do feedback."""


def _qualificacoes_para_feedback(fornecedor_id, agora):
    ultimo_mes = agora - timedelta(days=30)
    base = Qualificacao.query.filter_by(fornecedor_id=fornecedor_id, status='concluido')
    recentes = base.filter(Qualificacao.criado_em >= ultimo_mes).all()
    if recentes:
        return recentes, 'último mês'
    historico = base.order_by(Qualificacao.criado_em.desc()).limit(LIMITE_HISTORICO).all()
    return historico, 'histórico completo'


def criterios_com_menor_nota(qualificacoes, limite=LIMITE_CRITERIOS):
    por_codigo = {}
    for qualificacao in qualificacoes:
        for avaliacao in qualificacao.avaliacoes:
            criterio = avaliacao.criterio
            if criterio is None:
                continue
            item = por_codigo.setdefault(
                criterio.codigo,
                {'codigo': criterio.codigo, 'descricao': criterio.descricao, 'scores': [], 'observacoes': []},
            )
            item['scores'].append(avaliacao.score)
            if avaliacao.observacao:
                item['observacoes'].append(avaliacao.observacao)
    resultado = [
        {
            'codigo': item['codigo'],
            'descricao': item['descricao'],
            'avg_score': media(item['scores']),
            'observacoes': item['observacoes'],
        }
        for item in por_codigo.values()
    ]
    resultado.sort(key=lambda c: c['avg_score'])
    return resultado[:limite]


def montar_prompt(fornecedor, criterios):
    linhas = []
    for criterio in criterios:
        observacoes = '; '.join(criterio['observacoes']) if criterio['observacoes'] else 'Nenhuma'
        linhas.append(
            f"- {criterio['descricao']} (Código: {criterio['codigo']})\n"
            f"  Score médio: {criterio['avg_score']:.1f}/5\n"
            f"  Observações registradas: {observacoes}"
        )
    return (
        'Você é um consultor de qualidade para fornecedores industriais.\n'
        'Analise os critérios de avaliação abaixo que obtiveram os menores scores e gere '
        'sugestões de melhoria práticas e específicas para cada um.\n\n'
        f'Fornecedor: {fornecedor.nome}\n'
        f'Score geral atual: {arredondar(fornecedor.score_atual or 0)}%\n\n'
        'Critérios com menor pontuação (score de 0 a 5):\n'
        + '\n'.join(linhas)
        + '\n\nGere um texto profissional de feedback em português brasileiro com uma saudação '
          'cordial, um resumo do desempenho geral, 2-3 sugestões de melhoria para cada critério '
          'listado e uma mensagem de incentivo final. Texto corrido, sem markdown.'
    )


def gerar_sugestoes(prompt):
    """
    Pede sugestoes ao gateway de IA configurado.

    Sem AI_GATEWAY_URL/AI_API_KEY o relatorio segue com um texto padrao.

    Raises:
        FeedbackError: limite de requisicoes, creditos insuficientes ou erro do gateway
    """
    url = current_app.config.get('AI_GATEWAY_URL')
    chave = current_app.config.get('AI_API_KEY')
    if not url or not chave:
        current_app.logger.info('Gateway de IA nao configurado, feedback sem sugestoes')
        return TEXTO_SEM_SUGESTOES

    resposta = requests.post(
        url,
        headers={'Authorization': f'Bearer {chave}', 'Content-Type': 'application/json'},
        json={
            'model': current_app.config.get('AI_MODELO'),
            'messages': [
                {'role': 'system', 'content': 'Você é um consultor especializado em qualidade de '
                                              'fornecedores industriais. Gere feedbacks construtivos e práticos.'},
                {'role': 'user', 'content': prompt},
            ],
        },
        timeout=60,
    )
    if resposta.status_code == 429:
        raise FeedbackError('Limite de requisições excedido. Tente novamente mais tarde.')
    if resposta.status_code == 402:
        raise FeedbackError('Créditos insuficientes. Adicione créditos ao workspace.')
    if not resposta.ok:
        current_app.logger.error(f'Erro no gateway de IA: {resposta.status_code} {resposta.text}')
        raise FeedbackError('Erro ao gerar sugestões com IA')

    escolhas = resposta.json().get('choices') or [{}]
    return (escolhas[0].get('message') or {}).get('content') or TEXTO_SEM_SUGESTOES


def _classe_score(score):
    if score >= 80:
        return 'score-good'
    if score >= 70:
        return 'score-warning'
    return 'score-bad'


def montar_email(fornecedor, contato_nome, periodo, total_qualificacoes, criterios, sugestoes):
    score = fornecedor.score_atual or 0
    itens = ''.join(
        f"""
        <div class="criteria-item">
          <strong>{escape(c['descricao'])}</strong><br>
          <small>Score médio: {arredondar(c['avg_score'] * FATOR_ESCALA_SCORE)}%</small>
        </div>"""
        for c in criterios
    )
    return f"""
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <style>
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }}
    .header {{ background: #0d9488; color: white; padding: 30px; border-radius: 8px 8px 0 0; }}
    .content {{ background: #f9fafb; padding: 30px; border-radius: 0 0 8px 8px; }}
    .score-badge {{ display: inline-block; padding: 8px 16px; border-radius: 20px; font-weight: bold; margin: 10px 0; }}
    .score-good {{ background: #dcfce7; color: #166534; }}
    .score-warning {{ background: #fef9c3; color: #854d0e; }}
    .score-bad {{ background: #fee2e2; color: #991b1b; }}
    .criteria-item {{ background: white; padding: 15px; margin: 10px 0; border-radius: 8px; border-left: 4px solid #0d9488; }}
    .suggestions {{ background: white; padding: 20px; border-radius: 8px; margin-top: 20px; white-space: pre-wrap; }}
    .footer {{ text-align: center; margin-top: 30px; color: #6b7280; font-size: 12px; }}
  </style>
</head>
<body>
  <div class="header">
    <h1 style="margin: 0;">Relatório de Qualificação</h1>
    <p style="margin: 10px 0 0 0;">Qualifica+ - Sistema de Qualificação de Fornecedores</p>
  </div>
  <div class="content">
    <h2>Olá, {escape(contato_nome or 'Fornecedor')}!</h2>
    <p>Segue o relatório de qualificação do fornecedor <strong>{escape(fornecedor.nome)}</strong> referente ao {periodo}.</p>
    <p><strong>Score Geral:</strong></p>
    <span class="score-badge {_classe_score(score)}">{arredondar(score)}%</span>
    <p><strong>Qualificações analisadas:</strong> {total_qualificacoes}</p>
    <h3>Critérios com Menor Pontuação:</h3>
    <div class="criteria-list">{itens}
    </div>
    <h3>Sugestões de Melhoria:</h3>
    <div class="suggestions">{escape(sugestoes)}</div>
  </div>
  <div class="footer">
    <p>Este email foi gerado automaticamente pelo sistema Qualifica+</p>
  </div>
</body>
</html>
"""


def enviar_feedback_fornecedor(fornecedor_id, agora=None):
    """
    Gera e envia o relatorio de qualificacao de um fornecedor.

    Usa as qualificacoes concluidas do ultimo mes; sem nenhuma, usa as 20 mais
    recentes do historico. Quando FEEDBACK_EMAIL_DESTINO_TESTE esta definido,
    o e-mail vai apenas para esse endereco e os destinatarios reais sao
    devolvidos em "originalRecipients".

    Returns:
        Dicionario de status {"success", "message", "recipients", "originalRecipients"}

    Raises:
        FeedbackError: fornecedor inexistente, sem contatos com e-mail ou sem
            qualificacoes concluidas
    """
    agora = agora or datetime.utcnow()
    fornecedor = db.session.get(Fornecedor, fornecedor_id)
    if not fornecedor:
        raise FeedbackError('Fornecedor não encontrado')

    contatos = (
        FornecedorContato.query.filter_by(fornecedor_id=fornecedor.id)
        .filter(FornecedorContato.email.isnot(None), FornecedorContato.email != '')
        .order_by(FornecedorContato.id)
        .all()
    )
    if not contatos:
        raise FeedbackError('Fornecedor não possui contatos com email cadastrado')

    qualificacoes, periodo = _qualificacoes_para_feedback(fornecedor.id, agora)
    if not qualificacoes:
        raise FeedbackError('Fornecedor não possui qualificações concluídas')

    current_app.logger.info(f'Feedback de {fornecedor.nome}: {len(qualificacoes)} qualificacoes ({periodo})')
    criterios = criterios_com_menor_nota(qualificacoes)
    sugestoes = gerar_sugestoes(montar_prompt(fornecedor, criterios))
    corpo = montar_email(fornecedor, contatos[0].nome, periodo, len(qualificacoes), criterios, sugestoes)

    destinatarios_originais = [c.email for c in contatos]
    destino_teste = current_app.config.get('FEEDBACK_EMAIL_DESTINO_TESTE')
    if destino_teste:
        current_app.logger.warning(
            f'Modo de teste: feedback redirecionado para {destino_teste} (originais: {destinatarios_originais})'
        )
        destinatarios = [destino_teste]
        assunto = f'[TESTE] Relatório de Qualificação - {fornecedor.nome}'
        mensagem = f'Feedback enviado para {destino_teste} (modo de teste)'
    else:
        destinatarios = destinatarios_originais
        assunto = f'Relatório de Qualificação - {fornecedor.nome}'
        mensagem = f'Feedback enviado para {len(destinatarios)} contato(s)'

    enviar_email(destinatarios, assunto, corpo)
    return {
        'success': True,
        'message': mensagem,
        'recipients': destinatarios,
        'originalRecipients': destinatarios_originais,
    }
