"""
Cliente de autenticacao SSO Senior X para a aplicacao embarcada.

Quando a aplicacao roda dentro de um frame da plataforma Senior X, a
plataforma pai entrega as credenciais por mensagens entre contextos. Este
modulo implementa o lado da aplicacao desse handshake:

- OuvinteMensagens: recebe mensagens, filtra pela origem e repassa o payload;
- LacoSolicitacao: pede as credenciais ao pai ate autenticar ou expirar;
- SincronizadorIdentidade: troca a identidade externa por uma sessao propria
  (/api/seniorx/sincronizar + /api/auth/verificar-otp);
- FachadaAutenticacao: une o caminho Senior X e o login por e-mail/senha;
- avaliar_rota: decide entre carregar, aguardar SSO, redirecionar ou liberar.

O fluxo e dirigido por callbacks. Temporizadores passam por um Agendador
injetado para que possam ser cancelados e testados com relogio virtual.
Callbacks de temporizador, mensagens e conclusao da sincronizacao podem
chegar em threads diferentes; o estado da fachada muda sob uma unica trava.
"""
import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum

import requests

from seniorx import (
    ArmazenamentoSessao,
    EmailAusenteError,
    MENSAGEM_SOLICITACAO,
    ModoSessao,
    ORIGENS_LEGADAS_PADRAO,
    DOMINIO_RAIZ_PADRAO,
    SnapshotSessao,
    extrair_credenciais,
    origem_confiavel,
)

logger = logging.getLogger(__name__)

ROTA_LOGIN = '/auth'


class ErroAutenticacao(Exception):
    """Falha reportada pelo backend de autenticacao."""


class ErroSincronizacao(Exception):
    pass


@dataclass
class ConfiguracaoSeniorX:
    dominio_raiz: str = DOMINIO_RAIZ_PADRAO
    legados: tuple = ORIGENS_LEGADAS_PADRAO
    intervalo: float = 1.0
    tempo_limite: float = 5.0

    @classmethod
    def do_ambiente(cls):
        legados = os.environ.get('SENIORX_ORIGENS_LEGADAS')
        return cls(
            dominio_raiz=os.environ.get('SENIORX_DOMINIO_RAIZ', DOMINIO_RAIZ_PADRAO),
            legados=tuple(h.strip() for h in legados.split(',') if h.strip())
            if legados else ORIGENS_LEGADAS_PADRAO,
            intervalo=float(os.environ.get('SENIORX_INTERVALO_TENTATIVA', 1.0)),
            tempo_limite=float(os.environ.get('SENIORX_TEMPO_LIMITE', 5.0)),
        )


# ============================================================================
# AGENDADOR
# ============================================================================

class _TarefaTimer:
    def __init__(self, timer):
        self._timer = timer

    def cancelar(self):
        self._timer.cancel()


class AgendadorThreading:
    """Agenda callbacks com threading.Timer."""

    def agendar(self, atraso, callback):
        timer = threading.Timer(atraso, callback)
        timer.daemon = True
        timer.start()
        return _TarefaTimer(timer)


# ============================================================================
# CANAL DE MENSAGENS ENTRE CONTEXTOS
# ============================================================================

@dataclass
class MensagemRecebida:
    origem: str
    dados: object


@dataclass
class ContextoNavegacao:
    """Onde a aplicacao esta rodando: frame estrangeiro ou janela propria."""

    embarcado: bool = False
    referrer: str = ''

    @property
    def modo(self):
        return ModoSessao.EMBARCADO if self.embarcado else ModoSessao.STANDALONE

    def provavelmente_seniorx(self, configuracao=None):
        configuracao = configuracao or ConfiguracaoSeniorX()
        return self.embarcado and origem_confiavel(
            self.referrer, configuracao.dominio_raiz, configuracao.legados
        )


class CanalMemoria:
    """
    Canal em processo: o host entrega mensagens com ``entregar`` e le os
    pedidos enviados ao pai em ``enviadas``.
    """

    def __init__(self):
        self._assinantes = []
        self.enviadas = []

    def assinar(self, handler):
        self._assinantes.append(handler)

        def _cancelar():
            if handler in self._assinantes:
                self._assinantes.remove(handler)
        return _cancelar

    def enviar_ao_pai(self, mensagem, destino='*'):
        self.enviadas.append((mensagem, destino))

    def entregar(self, origem, dados):
        for handler in list(self._assinantes):
            handler(MensagemRecebida(origem=origem, dados=dados))

    @property
    def total_assinantes(self):
        return len(self._assinantes)


class OuvinteMensagens:
    def __init__(self, canal, ao_receber, ja_autenticado, configuracao=None):
        self.canal = canal
        self.ao_receber = ao_receber
        self.ja_autenticado = ja_autenticado
        self.configuracao = configuracao or ConfiguracaoSeniorX()
        self.origens_ignoradas = set()
        self._cancelar_assinatura = None

    def montar(self):
        if self._cancelar_assinatura is None:
            self._cancelar_assinatura = self.canal.assinar(self.processar)

    def desmontar(self):
        if self._cancelar_assinatura is not None:
            self._cancelar_assinatura()
            self._cancelar_assinatura = None

    def processar(self, mensagem):
        if not origem_confiavel(mensagem.origem, self.configuracao.dominio_raiz, self.configuracao.legados):
            if mensagem.origem not in self.origens_ignoradas:
                self.origens_ignoradas.add(mensagem.origem)
                logger.info('[SeniorX] Mensagem ignorada de origem nao confiavel: %s', mensagem.origem)
            return
        if self.ja_autenticado():
            return
        logger.info('[SeniorX] Mensagem recebida da plataforma')
        self.ao_receber(mensagem.dados)


# ============================================================================
# LACO DE SOLICITACAO DE CREDENCIAIS
# ============================================================================

@dataclass
class SolicitacaoCredenciais:
    # O protocolo nao tem id de correlacao; a resposta e reconhecida pela
    # origem e pelo formato, por isso so existe uma solicitacao pendente.
    sequencia: int
    respondida: bool = False


class LacoSolicitacao:
    def __init__(self, canal, agendador, autenticado, ao_expirar, intervalo=1.0, tempo_limite=5.0):
        self.canal = canal
        self.agendador = agendador
        self.autenticado = autenticado
        self.ao_expirar = ao_expirar
        self.intervalo = intervalo
        self.tempo_limite = tempo_limite
        self.ativo = False
        self.expirado = False
        self.sequencia = 0
        self.pendente = None
        self._tarefa_repeticao = None
        self._tarefa_limite = None
        # temporizadores disparam em outras threads
        self._trava = threading.RLock()

    def iniciar(self):
        with self._trava:
            if self.ativo:
                return
            self.ativo = True
            self.expirado = False
            logger.info('[SeniorX] Solicitando dados de autenticacao a plataforma pai')
            self._tarefa_limite = self.agendador.agendar(self.tempo_limite, self._expirar)
            self._solicitar()

    def _solicitar(self):
        with self._trava:
            self._tarefa_repeticao = None
            if not self.ativo:
                return
            if self.autenticado():
                self.parar()
                return
            self.sequencia += 1
            self.pendente = SolicitacaoCredenciais(sequencia=self.sequencia)
            self.canal.enviar_ao_pai(MENSAGEM_SOLICITACAO, '*')
            self._tarefa_repeticao = self.agendador.agendar(self.intervalo, self._solicitar)

    def _expirar(self):
        with self._trava:
            self._tarefa_limite = None
            if not self.ativo:
                return
            self.parar()
            self.expirado = True
        logger.info('[SeniorX] Timeout de autenticacao atingido')
        # fora da trava: o callback usa a trava da fachada
        self.ao_expirar()

    def registrar_resposta(self):
        with self._trava:
            if self.pendente is not None:
                self.pendente.respondida = True
            self.parar()

    def parar(self):
        with self._trava:
            self.ativo = False
            for tarefa in (self._tarefa_repeticao, self._tarefa_limite):
                if tarefa is not None:
                    tarefa.cancelar()
            self._tarefa_repeticao = None
            self._tarefa_limite = None

    cancelar = parar


# ============================================================================
# CLIENTE DO BACKEND (SESSAO PROPRIA)
# ============================================================================

@dataclass
class SessaoPrimaria:
    access_token: str
    refresh_token: str = None
    expires_in: int = None
    usuario: dict = field(default_factory=dict)

    @classmethod
    def de_resposta(cls, dados):
        return cls(
            access_token=dados['access_token'],
            refresh_token=dados.get('refresh_token'),
            expires_in=dados.get('expires_in'),
            usuario=dados.get('user') or {},
        )


class ClienteAPI:
    """Cliente HTTP da API de qualificacao (login, sessao e sincronizacao)."""

    def __init__(self, base_url, sessao_http=None, timeout=10):
        self.base_url = base_url.rstrip('/')
        self.http = sessao_http or requests.Session()
        self.timeout = timeout
        self.sessao = None
        self._assinantes = []

    def _url(self, caminho):
        return f'{self.base_url}{caminho}'

    def _requisitar(self, metodo, caminho, token=None, **kwargs):
        headers = kwargs.pop('headers', {})
        if token:
            headers['Authorization'] = f'Bearer {token}'
        resposta = self.http.request(
            metodo, self._url(caminho), headers=headers, timeout=self.timeout, **kwargs
        )
        try:
            dados = resposta.json()
        except ValueError:
            dados = {}
        if resposta.status_code >= 400:
            mensagem = dados.get('message') or dados.get('error') or resposta.reason
            raise ErroAutenticacao(f'{resposta.status_code}: {mensagem}')
        return dados

    def _definir_sessao(self, sessao):
        self.sessao = sessao
        for callback in list(self._assinantes):
            callback(sessao)

    def assinar(self, callback):
        self._assinantes.append(callback)

        def _cancelar():
            if callback in self._assinantes:
                self._assinantes.remove(callback)
        return _cancelar

    def entrar(self, email, senha):
        dados = self._requisitar('POST', '/api/auth/login', json={'email': email, 'senha': senha})
        self._definir_sessao(SessaoPrimaria.de_resposta(dados))
        return self.sessao

    def cadastrar(self, email, senha, nome):
        return self._requisitar(
            'POST', '/api/auth/cadastro', json={'email': email, 'senha': senha, 'nome': nome}
        )

    def recuperar_senha(self, email):
        return self._requisitar('POST', '/api/auth/recuperar-senha', json={'email': email})

    def obter_sessao(self):
        if self.sessao is None:
            return None
        try:
            dados = self._requisitar('GET', '/api/auth/sessao', token=self.sessao.access_token)
        except ErroAutenticacao:
            return self._renovar()
        self.sessao.usuario = dados.get('user') or self.sessao.usuario
        return self.sessao

    def _renovar(self):
        if not self.sessao or not self.sessao.refresh_token:
            self._definir_sessao(None)
            return None
        try:
            dados = self._requisitar('POST', '/api/auth/refresh', token=self.sessao.refresh_token)
        except ErroAutenticacao:
            self._definir_sessao(None)
            return None
        self.sessao.access_token = dados['access_token']
        self._definir_sessao(self.sessao)
        return self.sessao

    def sair(self):
        sessao = self.sessao
        self._definir_sessao(None)
        if sessao is not None:
            # o refresh token tambem e revogado no logout
            self._requisitar(
                'POST', '/api/auth/logout', token=sessao.access_token,
                json={'refresh_token': sessao.refresh_token},
            )

    def verificar_otp(self, token_hash, tipo='magiclink'):
        dados = self._requisitar(
            'POST', '/api/auth/verificar-otp', json={'token_hash': token_hash, 'type': tipo}
        )
        self._definir_sessao(SessaoPrimaria.de_resposta(dados))
        return self.sessao

    def sincronizar_usuario(self, email, nome_completo, id_externo, token_externo=None):
        headers = {'X-Senior-Token': token_externo} if token_externo else {}
        return self._requisitar(
            'POST',
            '/api/seniorx/sincronizar',
            headers=headers,
            json={'email': email, 'fullName': nome_completo, 'seniorUserId': id_externo},
        )


# ============================================================================
# SINCRONIZACAO DA IDENTIDADE EXTERNA
# ============================================================================

class SincronizadorIdentidade:
    """
    Troca uma identidade Senior X verificada por uma sessao propria.

    Uma unica sincronizacao pode estar em andamento; chamadas concorrentes
    retornam False sem tocar o backend. O token Senior X recebido segue no
    header X-Senior-Token para que o backend valide a identidade.
    """

    def __init__(self, cliente):
        self.cliente = cliente
        self.em_andamento = False
        self.falhou = False
        self.ultimo_erro = None
        self.chamadas = 0
        self.sessao = None
        self._trava = threading.Lock()

    def _reservar(self):
        with self._trava:
            if self.em_andamento:
                return False
            self.em_andamento = True
            return True

    def sincronizar(self, email, nome_completo, id_externo, token_externo=None):
        if not self._reservar():
            logger.info('[SeniorX] Sincronizacao ja em andamento, ignorando')
            return False
        try:
            return self._executar(email, nome_completo, id_externo, token_externo)
        finally:
            self.em_andamento = False

    def disparar(self, agendador, email, nome_completo, id_externo, ao_concluir=None, token_externo=None):
        """Agenda a sincronizacao sem bloquear quem chamou."""
        if not self._reservar():
            logger.info('[SeniorX] Sincronizacao ja em andamento, ignorando')
            return None

        def _tarefa():
            try:
                resultado = self._executar(email, nome_completo, id_externo, token_externo)
            finally:
                self.em_andamento = False
            if ao_concluir is not None:
                ao_concluir(resultado)

        return agendador.agendar(0, _tarefa)

    def _executar(self, email, nome_completo, id_externo, token_externo=None):
        self.chamadas += 1
        try:
            resposta = self.cliente.sincronizar_usuario(
                email, nome_completo, id_externo, token_externo=token_externo
            )
            if not resposta or resposta.get('error'):
                raise ErroSincronizacao((resposta or {}).get('error') or 'resposta vazia')
            token_hash = resposta.get('token_hash')
            if not token_hash:
                raise ErroSincronizacao('token_hash ausente na resposta')
            sessao = self.cliente.verificar_otp(token_hash, 'magiclink')
            if sessao is None:
                raise ErroSincronizacao('verificacao do link unico nao retornou sessao')
            self.sessao = sessao
        except Exception as exc:
            self.falhou = True
            self.ultimo_erro = str(exc)
            logger.error('[SeniorX] Erro ao sincronizar usuario com o backend: %s', exc)
            return False
        self.falhou = False
        self.ultimo_erro = None
        logger.info('[SeniorX] Sessao propria criada para %s', email)
        return True


# ============================================================================
# FACHADA UNIFICADA
# ============================================================================

class EstadoAuth(str, Enum):
    DESCONHECIDO = 'desconhecido'
    CARREGANDO = 'carregando'
    AUTENTICADO_PRIMARIO = 'autenticado_primario'
    AUTENTICADO_EXTERNO = 'autenticado_externo'
    NAO_AUTENTICADO = 'nao_autenticado'


PROVEDOR_PRIMARIO = 'primary'
PROVEDOR_EXTERNO = 'external'


@dataclass
class UsuarioUnificado:
    id: str
    email: str
    full_name: str
    provedor: str


@dataclass
class AuthState:
    is_authenticated: bool
    is_loading: bool
    usuario: UsuarioUnificado = None
    provedor: str = None


class FachadaAutenticacao:
    def __init__(self, cliente, contexto, canal, armazenamento=None, agendador=None, configuracao=None):
        self.cliente = cliente
        self.contexto = contexto
        self.canal = canal
        self.armazenamento = armazenamento or ArmazenamentoSessao()
        self.agendador = agendador or AgendadorThreading()
        self.configuracao = configuracao or ConfiguracaoSeniorX()
        self.sincronizador = SincronizadorIdentidade(cliente)

        self.estado = EstadoAuth.DESCONHECIDO
        self.erro = None
        self.identidade = None
        self.token_externo = None
        self.sessao_primaria = None
        self.montado = False

        self.ouvinte = None
        self.laco = None
        self._cancelar_assinatura_primaria = None
        self._trava = threading.RLock()

    # -- propriedades consumidas pela aplicacao -----------------------------

    @property
    def is_authenticated(self):
        return self.estado in (EstadoAuth.AUTENTICADO_PRIMARIO, EstadoAuth.AUTENTICADO_EXTERNO)

    @property
    def is_loading(self):
        return self.estado in (EstadoAuth.DESCONHECIDO, EstadoAuth.CARREGANDO)

    @property
    def sincronizando(self):
        return self.sincronizador.em_andamento

    @property
    def sincronizacao_falhou(self):
        return self.sincronizador.falhou

    @property
    def usuario_atual(self):
        if self.estado == EstadoAuth.AUTENTICADO_EXTERNO and self.identidade:
            return UsuarioUnificado(
                id=self.identidade.id,
                email=self.identidade.email,
                full_name=self.identidade.full_name,
                provedor=PROVEDOR_EXTERNO,
            )
        if self.estado == EstadoAuth.AUTENTICADO_PRIMARIO and self.sessao_primaria:
            usuario = self.sessao_primaria.usuario or {}
            return UsuarioUnificado(
                id=str(usuario.get('id', '')),
                email=usuario.get('email') or '',
                full_name=usuario.get('full_name') or '',
                provedor=PROVEDOR_PRIMARIO,
            )
        return None

    def estado_auth(self):
        usuario = self.usuario_atual
        return AuthState(
            is_authenticated=self.is_authenticated,
            is_loading=self.is_loading,
            usuario=usuario,
            provedor=usuario.provedor if usuario else None,
        )

    # -- ciclo de vida --------------------------------------------------------

    def montar(self):
        with self._trava:
            self.montado = True
            self.estado = EstadoAuth.CARREGANDO

            if not self.contexto.embarcado:
                if self.armazenamento.possui_dados():
                    logger.info('[SeniorX] Fora de iframe, removendo sessao Senior X antiga')
                    self.armazenamento.limpar()
                self._cancelar_assinatura_primaria = self.cliente.assinar(self._ao_mudar_sessao_primaria)
                self._resolver_primario()
                return

            logger.info('[SeniorX] Detectado ambiente iframe, iniciando autenticacao SSO')
            self.ouvinte = OuvinteMensagens(
                self.canal, self._ao_receber_payload, lambda: self.is_authenticated, self.configuracao
            )
            self.laco = LacoSolicitacao(
                self.canal,
                self.agendador,
                autenticado=lambda: self.is_authenticated,
                ao_expirar=self._ao_expirar,
                intervalo=self.configuracao.intervalo,
                tempo_limite=self.configuracao.tempo_limite,
            )
            self.ouvinte.montar()

            snapshot = self.armazenamento.carregar()
            if snapshot is not None:
                self._restaurar(snapshot)
            else:
                self.laco.iniciar()

    def desmontar(self):
        with self._trava:
            self.montado = False
            if self.ouvinte is not None:
                self.ouvinte.desmontar()
            if self.laco is not None:
                self.laco.cancelar()
            if self._cancelar_assinatura_primaria is not None:
                self._cancelar_assinatura_primaria()
                self._cancelar_assinatura_primaria = None

    # -- caminho primario -------------------------------------------------

    def _obter_sessao_primaria(self):
        try:
            return self.cliente.obter_sessao()
        except Exception as exc:
            logger.error('Erro ao consultar sessao: %s', exc)
            return None

    def _resolver_primario(self):
        self.sessao_primaria = self._obter_sessao_primaria()
        self.estado = (
            EstadoAuth.AUTENTICADO_PRIMARIO if self.sessao_primaria else EstadoAuth.NAO_AUTENTICADO
        )

    def _ao_mudar_sessao_primaria(self, sessao):
        with self._trava:
            if not self.montado or self.estado == EstadoAuth.AUTENTICADO_EXTERNO:
                return
            self.sessao_primaria = sessao
            self.estado = EstadoAuth.AUTENTICADO_PRIMARIO if sessao else EstadoAuth.NAO_AUTENTICADO

    def entrar(self, email, senha):
        """Login por e-mail e senha. Retorna a mensagem de erro ou None."""
        try:
            sessao = self.cliente.entrar(email, senha)
        except Exception as exc:
            logger.error('Erro no login: %s', exc)
            return str(exc)
        with self._trava:
            self.sessao_primaria = sessao
            if self.estado != EstadoAuth.AUTENTICADO_EXTERNO:
                self.estado = EstadoAuth.AUTENTICADO_PRIMARIO
        return None

    def cadastrar(self, email, senha, nome):
        try:
            self.cliente.cadastrar(email, senha, nome)
        except Exception as exc:
            logger.error('Erro no cadastro: %s', exc)
            return str(exc)
        return None

    def recuperar_senha(self, email):
        try:
            self.cliente.recuperar_senha(email)
        except Exception as exc:
            logger.error('Erro ao solicitar recuperacao de senha: %s', exc)
            return str(exc)
        return None

    def sair(self):
        erro = None
        try:
            self.cliente.sair()
        except Exception as exc:
            logger.error('Erro ao encerrar sessao: %s', exc)
            erro = str(exc)
        with self._trava:
            self.armazenamento.limpar()
            if self.laco is not None:
                self.laco.cancelar()
            self.identidade = None
            self.token_externo = None
            self.sessao_primaria = None
            self.estado = EstadoAuth.NAO_AUTENTICADO
        return erro

    # -- caminho Senior X -------------------------------------------------

    def _restaurar(self, snapshot):
        self.identidade = snapshot.usuario
        self.token_externo = snapshot.token
        self.sessao_primaria = self._obter_sessao_primaria()
        if self.sessao_primaria is not None:
            logger.info('[SeniorX] Dados de autenticacao carregados do armazenamento')
            self.estado = EstadoAuth.AUTENTICADO_EXTERNO
            return
        logger.info('[SeniorX] Sessao propria expirada, sincronizando novamente')
        self._disparar_sincronizacao(restaurando=True)

    def _ao_receber_payload(self, dados):
        with self._trava:
            try:
                self._aplicar_payload(dados)
            except Exception as exc:
                # payload malformado e ruido; nada escapa para o canal
                logger.error('[SeniorX] Erro ao processar mensagem da plataforma: %s', exc)

    def _aplicar_payload(self, dados):
        try:
            credenciais = extrair_credenciais(dados)
        except EmailAusenteError as exc:
            logger.error('[SeniorX] %s', exc)
            self.erro = 'Usuario Senior X sem e-mail cadastrado'
            if self.laco is not None:
                self.laco.cancelar()
            if not self.is_authenticated:
                self.estado = EstadoAuth.NAO_AUTENTICADO
            return
        if credenciais is None:
            return

        # grava antes de mudar o estado: falha aqui descarta a mensagem inteira
        self.armazenamento.salvar(SnapshotSessao(
            usuario=credenciais.identidade,
            token=credenciais.access_token,
            modo=ModoSessao.EMBARCADO,
        ))
        self.identidade = credenciais.identidade
        self.token_externo = credenciais.access_token
        self.erro = None
        self.estado = EstadoAuth.AUTENTICADO_EXTERNO
        if self.laco is not None:
            self.laco.registrar_resposta()
        logger.info('[SeniorX] Usuario autenticado: %s', self.identidade.full_name)
        self._disparar_sincronizacao()

    def _ao_expirar(self):
        with self._trava:
            if not self.montado:
                return
            if self.estado == EstadoAuth.CARREGANDO:
                self.estado = EstadoAuth.NAO_AUTENTICADO

    def _disparar_sincronizacao(self, restaurando=False):
        identidade = self.identidade

        def _concluir(sucesso):
            with self._trava:
                if not self.montado or self.identidade is not identidade:
                    return
                if sucesso:
                    self.sessao_primaria = self.sincronizador.sessao
                if restaurando and self.estado == EstadoAuth.CARREGANDO:
                    self.estado = EstadoAuth.AUTENTICADO_EXTERNO

        tarefa = self.sincronizador.disparar(
            self.agendador,
            identidade.email,
            identidade.full_name,
            identidade.id,
            ao_concluir=_concluir,
            token_externo=self.token_externo,
        )
        if tarefa is None and restaurando and self.estado == EstadoAuth.CARREGANDO:
            self.estado = EstadoAuth.AUTENTICADO_EXTERNO


# ============================================================================
# GUARDA DE ROTAS
# ============================================================================

class AcaoRota(str, Enum):
    CARREGANDO = 'carregando'
    AGUARDANDO_SSO = 'aguardando_sso'
    REDIRECIONAR = 'redirecionar'
    LIBERADO = 'liberado'


@dataclass
class DecisaoRota:
    acao: AcaoRota
    mensagem: str = None
    destino: str = None


def avaliar_rota(fachada, contexto, rota_login=ROTA_LOGIN):
    """
    Decide o que renderizar numa rota protegida.

    Enquanto a plataforma Senior X pode entregar credenciais, a guarda nao
    redireciona para o login: sair da pagina interromperia o handshake.
    """
    if fachada.is_loading:
        return DecisaoRota(AcaoRota.CARREGANDO, mensagem='Carregando...')
    if fachada.is_authenticated:
        return DecisaoRota(AcaoRota.LIBERADO)
    if contexto.provavelmente_seniorx(fachada.configuracao):
        return DecisaoRota(AcaoRota.AGUARDANDO_SSO, mensagem='Aguardando autenticação Senior X...')
    return DecisaoRota(AcaoRota.REDIRECIONAR, destino=rota_login)
