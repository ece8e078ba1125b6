import json
import time

import pytest

from seniorx import (
    ArmazenamentoSessao,
    BackendMemoria,
    CHAVE_MODO,
    CHAVE_TOKEN,
    CHAVE_USUARIO,
    IdentidadeExterna,
    MENSAGEM_SOLICITACAO,
    SnapshotSessao,
)
from sso import (
    AcaoRota,
    AgendadorThreading,
    CanalMemoria,
    ConfiguracaoSeniorX,
    ContextoNavegacao,
    ErroAutenticacao,
    EstadoAuth,
    FachadaAutenticacao,
    LacoSolicitacao,
    PROVEDOR_EXTERNO,
    PROVEDOR_PRIMARIO,
    SessaoPrimaria,
    SincronizadorIdentidade,
    avaliar_rota,
)

ORIGEM_SENIOR = 'https://platform.senior.com.br'
ORIGEM_ESTRANHA = 'https://evil-senior.com.br.attacker.com'
MENSAGEM_VALIDA = json.dumps({
    'token': {
        'access_token': 'abc',
        'email': 'u@x.com',
        'username': 'u@tenant',
        'fullName': 'Ana+Silva',
    }
})


class ClienteFalso:
    """Backend em memória com a mesma interface do ClienteAPI."""

    def __init__(self, sessao=None, falhar_sincronizacao=False):
        self.sessao = sessao
        self.falhar_sincronizacao = falhar_sincronizacao
        self.sincronizacoes = []
        self.tokens_enviados = []
        self.otps = []
        self._assinantes = []

    def assinar(self, callback):
        self._assinantes.append(callback)

        def _cancelar():
            self._assinantes.remove(callback)
        return _cancelar

    def obter_sessao(self):
        return self.sessao

    def entrar(self, email, senha):
        if senha != 'certa':
            raise ErroAutenticacao('401: Credenciais inválidas')
        self.sessao = SessaoPrimaria(access_token='jwt', usuario={'id': 1, 'email': email})
        return self.sessao

    def sair(self):
        self.sessao = None

    def sincronizar_usuario(self, email, nome_completo, id_externo, token_externo=None):
        self.sincronizacoes.append((email, nome_completo, id_externo))
        self.tokens_enviados.append(token_externo)
        if self.falhar_sincronizacao:
            raise ErroAutenticacao('500: Erro interno')
        return {'success': True, 'userId': 7, 'token_hash': 'hash-unico', 'email': email}

    def verificar_otp(self, token_hash, tipo='magiclink'):
        self.otps.append((token_hash, tipo))
        self.sessao = SessaoPrimaria(access_token='jwt-proprio', usuario={'id': 7, 'email': 'u@x.com'})
        return self.sessao


def _montar_fachada(relogio, cliente=None, embarcado=True, referrer=ORIGEM_SENIOR, armazenamento=None):
    canal = CanalMemoria()
    contexto = ContextoNavegacao(embarcado=embarcado, referrer=referrer)
    fachada = FachadaAutenticacao(
        cliente or ClienteFalso(),
        contexto,
        canal,
        armazenamento=armazenamento or ArmazenamentoSessao(BackendMemoria()),
        agendador=relogio,
        configuracao=ConfiguracaoSeniorX(intervalo=1.0, tempo_limite=5.0),
    )
    fachada.montar()
    return fachada, canal, contexto


def _snapshot_salvo():
    armazenamento = ArmazenamentoSessao(BackendMemoria())
    armazenamento.salvar(SnapshotSessao(
        usuario=IdentidadeExterna(id='u', username='u', full_name='Ana Silva', email='u@x.com'),
        token='abc',
    ))
    return armazenamento


# ---------- Laço de solicitação ----------

def test_laco_sem_resposta_expira_no_tempo_limite(relogio):
    canal = CanalMemoria()
    expirou = []
    laco = LacoSolicitacao(canal, relogio, lambda: False, lambda: expirou.append(relogio.agora))
    laco.iniciar()

    relogio.avancar(4.9)
    assert expirou == []
    relogio.avancar(0.1)
    assert expirou == [5.0]
    assert canal.enviadas == [(MENSAGEM_SOLICITACAO, '*')] * 5
    assert relogio.pendentes == []

    relogio.avancar(10)
    assert len(canal.enviadas) == 5


def test_laco_para_ao_detectar_autenticacao(relogio):
    canal = CanalMemoria()
    autenticado = {'valor': False}
    laco = LacoSolicitacao(canal, relogio, lambda: autenticado['valor'], lambda: None)
    laco.iniciar()
    relogio.avancar(1)
    autenticado['valor'] = True
    relogio.avancar(1)
    assert len(canal.enviadas) == 2
    assert not laco.ativo
    assert relogio.pendentes == []


def test_iniciar_duas_vezes_nao_duplica_temporizadores(relogio):
    canal = CanalMemoria()
    laco = LacoSolicitacao(canal, relogio, lambda: False, lambda: None)
    laco.iniciar()
    laco.iniciar()
    assert len(canal.enviadas) == 1
    assert len(relogio.pendentes) == 2


# ---------- Cenários ponta a ponta ----------

def test_cenario_a_fora_de_iframe_resolve_pela_sessao_propria(relogio):
    armazenamento = _snapshot_salvo()
    cliente = ClienteFalso(sessao=SessaoPrimaria(access_token='jwt', usuario={'id': 1, 'email': 'p@x.com'}))
    fachada, canal, _ = _montar_fachada(relogio, cliente, embarcado=False, armazenamento=armazenamento)

    assert fachada.estado == EstadoAuth.AUTENTICADO_PRIMARIO
    assert fachada.usuario_atual.provedor == PROVEDOR_PRIMARIO
    assert not armazenamento.possui_dados()
    assert canal.total_assinantes == 0
    assert canal.enviadas == []

    canal.entregar(ORIGEM_SENIOR, MENSAGEM_VALIDA)
    assert fachada.estado == EstadoAuth.AUTENTICADO_PRIMARIO


def test_cenario_a_sem_sessao_redireciona(relogio):
    fachada, _, contexto = _montar_fachada(relogio, embarcado=False, referrer='')
    assert fachada.estado == EstadoAuth.NAO_AUTENTICADO
    decisao = avaliar_rota(fachada, contexto)
    assert decisao.acao == AcaoRota.REDIRECIONAR
    assert decisao.destino == '/auth'


def test_cenario_b_mensagem_confiavel_autentica_sem_esperar_sincronizacao(relogio):
    cliente = ClienteFalso()
    fachada, canal, contexto = _montar_fachada(relogio, cliente)
    assert fachada.is_loading

    relogio.avancar(1.2)
    canal.entregar(ORIGEM_SENIOR, MENSAGEM_VALIDA)

    assert fachada.is_authenticated
    assert not fachada.is_loading
    assert fachada.identidade == IdentidadeExterna(id='u', username='u', full_name='Ana Silva', email='u@x.com')
    assert fachada.sincronizando
    assert cliente.sincronizacoes == []
    assert fachada.armazenamento.carregar().token == 'abc'

    relogio.avancar(0)
    assert cliente.sincronizacoes == [('u@x.com', 'Ana Silva', 'u')]
    assert cliente.tokens_enviados == ['abc']
    assert cliente.otps == [('hash-unico', 'magiclink')]
    assert fachada.sessao_primaria.access_token == 'jwt-proprio'
    assert not fachada.sincronizando

    usuario = fachada.usuario_atual
    assert usuario.provedor == PROVEDOR_EXTERNO
    assert usuario.email == 'u@x.com'
    assert avaliar_rota(fachada, contexto).acao == AcaoRota.LIBERADO

    relogio.avancar(10)
    assert len(canal.enviadas) == 2


def test_cenario_c_apenas_origens_estranhas_expira(relogio):
    fachada, canal, contexto = _montar_fachada(relogio)
    relogio.avancar(1.5)
    canal.entregar(ORIGEM_ESTRANHA, MENSAGEM_VALIDA)
    canal.entregar(ORIGEM_ESTRANHA, MENSAGEM_VALIDA)
    assert fachada.ouvinte.origens_ignoradas == {ORIGEM_ESTRANHA}

    relogio.avancar(3.4)
    assert fachada.is_loading
    relogio.avancar(0.1)
    assert not fachada.is_loading
    assert not fachada.is_authenticated
    assert fachada.identidade is None

    # referrer Senior X: a guarda aguarda em vez de redirecionar
    decisao = avaliar_rota(fachada, contexto)
    assert decisao.acao == AcaoRota.AGUARDANDO_SSO
    assert decisao.mensagem == 'Aguardando autenticação Senior X...'


def test_cenario_c_sem_referrer_senior_redireciona(relogio):
    fachada, _, contexto = _montar_fachada(relogio, referrer='https://intranet.empresa.com')
    relogio.avancar(5)
    assert avaliar_rota(fachada, contexto).acao == AcaoRota.REDIRECIONAR


def test_cenario_d_mensagem_sem_token_e_ruido(relogio):
    cliente = ClienteFalso()
    fachada, canal, _ = _montar_fachada(relogio, cliente)
    relogio.avancar(1.5)
    canal.entregar(ORIGEM_SENIOR, {'token': {'email': 'u@x.com', 'username': 'u'}})
    canal.entregar(ORIGEM_SENIOR, '{json quebrado')

    assert fachada.identidade is None
    assert fachada.laco.ativo
    relogio.avancar(2)
    assert len(canal.enviadas) == 4

    relogio.avancar(1.5)
    assert fachada.estado == EstadoAuth.NAO_AUTENTICADO
    assert cliente.sincronizacoes == []


def test_token_sem_email_encerra_carregamento(relogio):
    fachada, canal, _ = _montar_fachada(relogio)
    canal.entregar(ORIGEM_SENIOR, {'token': {'access_token': 'abc', 'username': 'u'}})

    assert fachada.estado == EstadoAuth.NAO_AUTENTICADO
    assert not fachada.is_loading
    assert fachada.erro
    assert relogio.pendentes == []


@pytest.mark.parametrize('mensagem', [
    {'token': {'access_token': 'abc', 'email': 123}},
    {'token': {'access_token': 'abc', 'email': ['u@x.com']}},
    json.dumps({'data': {'token': {'accessToken': 'abc', 'email': {'v': 1}}}}),
])
def test_email_malformado_de_origem_confiavel_nao_escapa(relogio, mensagem):
    fachada, canal, _ = _montar_fachada(relogio)
    canal.entregar(ORIGEM_SENIOR, mensagem)

    assert fachada.estado == EstadoAuth.NAO_AUTENTICADO
    assert fachada.identidade is None
    assert fachada.erro


def test_campos_malformados_sao_convertidos_e_autenticam(relogio):
    cliente = ClienteFalso()
    fachada, canal, _ = _montar_fachada(relogio, cliente)
    canal.entregar(ORIGEM_SENIOR, {'token': {
        'access_token': 'abc', 'email': 'u@x.com', 'username': 42, 'fullName': ['Ana'],
    }})

    assert fachada.is_authenticated
    assert fachada.identidade.username == '42'
    assert fachada.identidade.full_name == ''
    relogio.avancar(0)
    assert cliente.sincronizacoes == [('u@x.com', '', '42')]


def test_falha_inesperada_ao_processar_mensagem_e_descartada(relogio):
    class _BackendSemEspaco(BackendMemoria):
        def definir(self, chave, valor):
            raise OSError('sem espaco')

    cliente = ClienteFalso()
    fachada, canal, _ = _montar_fachada(
        relogio, cliente, armazenamento=ArmazenamentoSessao(_BackendSemEspaco())
    )
    canal.entregar(ORIGEM_SENIOR, MENSAGEM_VALIDA)

    assert fachada.estado == EstadoAuth.CARREGANDO
    assert fachada.identidade is None
    assert fachada.laco.ativo
    relogio.avancar(5)
    assert fachada.estado == EstadoAuth.NAO_AUTENTICADO
    assert cliente.sincronizacoes == []


def test_expiracao_em_outra_thread_nao_sobrescreve_login():
    cliente = ClienteFalso()
    canal = CanalMemoria()
    fachada = FachadaAutenticacao(
        cliente,
        ContextoNavegacao(embarcado=True, referrer=ORIGEM_SENIOR),
        canal,
        armazenamento=ArmazenamentoSessao(BackendMemoria()),
        agendador=AgendadorThreading(),
        configuracao=ConfiguracaoSeniorX(intervalo=10.0, tempo_limite=0.05),
    )
    with fachada._trava:
        fachada.montar()
        temporizador = fachada.laco._tarefa_limite._timer
        # o timeout dispara e fica parado na trava da fachada
        time.sleep(0.3)
        assert fachada.laco.expirado
        assert fachada.estado == EstadoAuth.CARREGANDO
        canal.entregar(ORIGEM_SENIOR, MENSAGEM_VALIDA)
        assert fachada.estado == EstadoAuth.AUTENTICADO_EXTERNO

    temporizador.join(timeout=2)
    assert not temporizador.is_alive()
    assert fachada.estado == EstadoAuth.AUTENTICADO_EXTERNO
    fachada.desmontar()


def test_mensagem_repetida_nao_sincroniza_de_novo(relogio):
    cliente = ClienteFalso()
    fachada, canal, _ = _montar_fachada(relogio, cliente)
    canal.entregar(ORIGEM_SENIOR, MENSAGEM_VALIDA)
    canal.entregar(ORIGEM_SENIOR, MENSAGEM_VALIDA)
    relogio.avancar(0)
    canal.entregar(ORIGEM_SENIOR, MENSAGEM_VALIDA)
    relogio.avancar(1)
    assert len(cliente.sincronizacoes) == 1


def test_resposta_tardia_apos_timeout_e_aceita(relogio):
    fachada, canal, _ = _montar_fachada(relogio)
    relogio.avancar(5)
    assert fachada.estado == EstadoAuth.NAO_AUTENTICADO

    canal.entregar(ORIGEM_SENIOR, MENSAGEM_VALIDA)
    assert fachada.estado == EstadoAuth.AUTENTICADO_EXTERNO


def test_desmontar_remove_ouvinte_e_temporizadores(relogio):
    fachada, canal, _ = _montar_fachada(relogio)
    assert canal.total_assinantes == 1
    fachada.desmontar()

    assert canal.total_assinantes == 0
    assert relogio.pendentes == []
    relogio.avancar(10)
    assert len(canal.enviadas) == 1
    assert fachada.estado == EstadoAuth.CARREGANDO


def test_sincronizacao_em_andamento_e_descartada_apos_desmontar(relogio):
    cliente = ClienteFalso()
    fachada, canal, _ = _montar_fachada(relogio, cliente)
    canal.entregar(ORIGEM_SENIOR, MENSAGEM_VALIDA)
    fachada.desmontar()

    relogio.avancar(0)
    assert len(cliente.sincronizacoes) == 1
    assert fachada.sessao_primaria is None


def test_falha_na_sincronizacao_nao_derruba_autenticacao_externa(relogio):
    cliente = ClienteFalso(falhar_sincronizacao=True)
    fachada, canal, _ = _montar_fachada(relogio, cliente)
    canal.entregar(ORIGEM_SENIOR, MENSAGEM_VALIDA)
    relogio.avancar(0)

    assert fachada.is_authenticated
    assert fachada.sincronizacao_falhou
    assert '500' in fachada.sincronizador.ultimo_erro
    assert fachada.sessao_primaria is None


def test_restaura_snapshot_com_sessao_propria_valida(relogio):
    cliente = ClienteFalso(sessao=SessaoPrimaria(access_token='jwt', usuario={'id': 7}))
    fachada, canal, _ = _montar_fachada(relogio, cliente, armazenamento=_snapshot_salvo())

    assert fachada.estado == EstadoAuth.AUTENTICADO_EXTERNO
    assert fachada.identidade.email == 'u@x.com'
    assert canal.enviadas == []
    assert cliente.sincronizacoes == []


def test_restaura_snapshot_sem_sessao_propria_sincroniza(relogio):
    cliente = ClienteFalso()
    fachada, canal, _ = _montar_fachada(relogio, cliente, armazenamento=_snapshot_salvo())

    assert fachada.estado == EstadoAuth.CARREGANDO
    relogio.avancar(0)
    assert fachada.estado == EstadoAuth.AUTENTICADO_EXTERNO
    assert cliente.sincronizacoes == [('u@x.com', 'Ana Silva', 'u')]
    assert cliente.tokens_enviados == ['abc']
    assert fachada.sessao_primaria.access_token == 'jwt-proprio'
    assert canal.enviadas == []


def test_restauracao_com_sincronizacao_falha_sai_do_carregamento(relogio):
    cliente = ClienteFalso(falhar_sincronizacao=True)
    fachada, _, _ = _montar_fachada(relogio, cliente, armazenamento=_snapshot_salvo())

    assert fachada.estado == EstadoAuth.CARREGANDO
    relogio.avancar(0)
    assert fachada.estado == EstadoAuth.AUTENTICADO_EXTERNO
    assert fachada.sincronizacao_falhou
    assert fachada.sessao_primaria is None


def test_snapshot_corrompido_reinicia_handshake(relogio):
    armazenamento = ArmazenamentoSessao(BackendMemoria({
        CHAVE_USUARIO: '{nao e json',
        CHAVE_TOKEN: 'abc',
        CHAVE_MODO: 'true',
    }))
    fachada, canal, _ = _montar_fachada(relogio, armazenamento=armazenamento)

    assert not fachada.is_authenticated
    assert not armazenamento.possui_dados()
    assert canal.enviadas == [(MENSAGEM_SOLICITACAO, '*')]


def test_sair_limpa_tudo(relogio):
    cliente = ClienteFalso()
    fachada, canal, _ = _montar_fachada(relogio, cliente)
    canal.entregar(ORIGEM_SENIOR, MENSAGEM_VALIDA)
    relogio.avancar(0)

    assert fachada.sair() is None
    assert fachada.estado == EstadoAuth.NAO_AUTENTICADO
    assert fachada.identidade is None
    assert not fachada.armazenamento.possui_dados()
    assert cliente.sessao is None


def test_login_primario_pela_fachada(relogio):
    fachada, _, _ = _montar_fachada(relogio, embarcado=False, referrer='')
    assert fachada.entrar('p@x.com', 'errada').startswith('401')
    assert fachada.estado == EstadoAuth.NAO_AUTENTICADO
    assert fachada.entrar('p@x.com', 'certa') is None
    assert fachada.estado_auth().provedor == PROVEDOR_PRIMARIO


def test_guarda_mostra_carregando():
    class _Fachada:
        is_loading = True
        is_authenticated = False
        configuracao = ConfiguracaoSeniorX()

    decisao = avaliar_rota(_Fachada(), ContextoNavegacao(embarcado=True, referrer=ORIGEM_SENIOR))
    assert decisao.acao == AcaoRota.CARREGANDO
    assert decisao.mensagem == 'Carregando...'


def test_sincronizador_aceita_uma_execucao_por_vez(relogio):
    cliente = ClienteFalso()
    sincronizador = SincronizadorIdentidade(cliente)
    concluidas = []

    assert sincronizador.disparar(relogio, 'u@x.com', 'Ana', 'u', concluidas.append) is not None
    assert sincronizador.disparar(relogio, 'u@x.com', 'Ana', 'u', concluidas.append) is None
    relogio.avancar(0)

    assert concluidas == [True]
    assert len(cliente.sincronizacoes) == 1
    assert sincronizador.chamadas == 1


@pytest.mark.parametrize('resposta', [{'error': 'Conflito'}, {'success': True}])
def test_sincronizador_resposta_invalida_marca_falha(resposta):
    class _Cliente(ClienteFalso):
        def sincronizar_usuario(self, email, nome_completo, id_externo, token_externo=None):
            return resposta

    sincronizador = SincronizadorIdentidade(_Cliente())
    assert sincronizador.sincronizar('u@x.com', 'Ana', 'u') is False
    assert sincronizador.falhou
    assert not sincronizador.em_andamento
