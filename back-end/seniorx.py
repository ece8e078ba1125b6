"""
Integracao com a plataforma Senior X: validacao de origem, normalizacao do
payload de autenticacao e armazenamento persistente da sessao externa.

Tudo neste modulo e sincrono e sem efeitos colaterais fora do backend de
armazenamento injetado, para que possa ser testado com tabelas estaticas.
"""
import json
import logging
import os
from dataclasses import dataclass, asdict
from enum import Enum
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DOMINIO_RAIZ_PADRAO = 'senior.com.br'
ORIGENS_LEGADAS_PADRAO = ('platform.senior.com.br',)

# Mensagem literal enviada a plataforma pai pedindo as credenciais
MENSAGEM_SOLICITACAO = 'requestInitialData'

CHAVE_USUARIO = 'senior_user'
CHAVE_TOKEN = 'senior_token'
CHAVE_MODO = 'senior_mode'


class EmailAusenteError(ValueError):
    """Payload trouxe token de acesso mas nenhum e-mail."""


class ModoSessao(str, Enum):
    STANDALONE = 'standalone'
    EMBARCADO = 'embarcado'


@dataclass
class IdentidadeExterna:
    id: str
    username: str
    full_name: str
    email: str
    tenant_domain: str = ''

    def para_dict(self):
        return asdict(self)

    @classmethod
    def de_dict(cls, dados):
        return cls(
            id=dados['id'],
            username=dados['username'],
            full_name=dados.get('full_name', ''),
            email=dados['email'],
            tenant_domain=dados.get('tenant_domain', ''),
        )


@dataclass
class SnapshotSessao:
    usuario: IdentidadeExterna
    token: str
    modo: ModoSessao = ModoSessao.EMBARCADO


@dataclass
class CredenciaisRecebidas:
    identidade: IdentidadeExterna
    access_token: str


# ============================================================================
# VALIDACAO DE ORIGEM
# ============================================================================

def origem_confiavel(origem, dominio_raiz=DOMINIO_RAIZ_PADRAO, legados=ORIGENS_LEGADAS_PADRAO):
    """
    Indica se a origem de uma mensagem pertence a plataforma Senior X.

    Aceita o dominio raiz, qualquer subdominio dele (``*.senior.com.br``) ou um
    host da lista de legados. Textos que nao sao URL sao rejeitados sem excecao.

    Args:
        origem: Origem da mensagem (esquema + host + porta)
        dominio_raiz: Dominio confiavel
        legados: Hosts aceitos explicitamente

    Returns:
        True se a origem e confiavel, False caso contrario
    """
    if not origem or not isinstance(origem, str):
        return False
    try:
        hostname = urlparse(origem.strip()).hostname
    except ValueError:
        return False
    if not hostname:
        return False
    hostname = hostname.rstrip('.').lower()
    raiz = (dominio_raiz or '').strip().lower()
    if raiz and (hostname == raiz or hostname.endswith('.' + raiz)):
        return True
    return hostname in {h.strip().lower() for h in (legados or ())}


# ============================================================================
# NORMALIZACAO DO PAYLOAD
# ============================================================================

def normalizar_usuario(username):
    """Remove o sufixo ``@tenant`` do login."""
    if not isinstance(username, str):
        return ''
    if username and '@' in username:
        return username.split('@')[0]
    return username or ''


def normalizar_nome_completo(nome):
    # valores chegam codificados como query string
    if not isinstance(nome, str):
        return ''
    return nome.replace('+', ' ')


def _carregar_bruto(bruto):
    if isinstance(bruto, (bytes, bytearray)):
        bruto = bruto.decode('utf-8', errors='replace')
    if isinstance(bruto, str):
        try:
            bruto = json.loads(bruto)
        except ValueError:
            return None
    return bruto if isinstance(bruto, dict) else None


def _token_direto(payload):
    return payload.get('token')


def _token_em_payload(payload):
    interno = payload.get('payload')
    return interno.get('token') if isinstance(interno, dict) else None


def _token_em_data(payload):
    interno = payload.get('data')
    return interno.get('token') if isinstance(interno, dict) else None


# Formatos conhecidos de integradores, testados em ordem
FORMATOS_CONHECIDOS = (
    ('token', _token_direto),
    ('payload.token', _token_em_payload),
    ('data.token', _token_em_data),
)


def _extrair_access_token(token):
    if not isinstance(token, dict):
        return None
    valor = token.get('access_token') or token.get('accessToken')
    return valor if isinstance(valor, str) and valor else None


def _campo_texto(valor):
    if isinstance(valor, str):
        return valor.strip()
    if isinstance(valor, (int, float)) and not isinstance(valor, bool):
        return str(valor)
    return ''


def extrair_credenciais(bruto):
    """
    Extrai identidade e token de acesso de uma mensagem da plataforma.

    Returns:
        CredenciaisRecebidas ou None quando a mensagem nao traz credenciais

    Raises:
        EmailAusenteError: token presente sem e-mail
    """
    payload = _carregar_bruto(bruto)
    if payload is None:
        return None

    for formato, extrator in FORMATOS_CONHECIDOS:
        token = extrator(payload)
        access_token = _extrair_access_token(token)
        if not access_token:
            continue
        # e-mail que nao e texto conta como ausente
        email = token.get('email')
        email = email.strip() if isinstance(email, str) else ''
        if not email:
            raise EmailAusenteError(f'Payload Senior X ({formato}) sem e-mail')
        username = normalizar_usuario(_campo_texto(token.get('username')))
        identidade = IdentidadeExterna(
            id=username,
            username=username,
            full_name=normalizar_nome_completo(_campo_texto(token.get('fullName'))),
            email=email,
            tenant_domain=_campo_texto(token.get('tenantName')) or _campo_texto(token.get('tenantDomain')),
        )
        return CredenciaisRecebidas(identidade=identidade, access_token=access_token)
    return None


def normalizar_payload(bruto):
    credenciais = extrair_credenciais(bruto)
    return credenciais.identidade if credenciais else None


# ============================================================================
# ARMAZENAMENTO DA SESSAO EXTERNA
# ============================================================================

class BackendMemoria:
    def __init__(self, dados=None):
        self.dados = dict(dados or {})

    def obter(self, chave):
        return self.dados.get(chave)

    def definir(self, chave, valor):
        self.dados[chave] = valor

    def remover(self, chave):
        self.dados.pop(chave, None)


class BackendArquivoJson:
    """Chave/valor persistido em arquivo JSON, equivalente ao localStorage."""

    def __init__(self, caminho):
        self.caminho = caminho

    def _ler(self):
        if not os.path.exists(self.caminho):
            return {}
        try:
            with open(self.caminho, 'r', encoding='utf-8') as arquivo:
                dados = json.load(arquivo)
        except (OSError, ValueError) as exc:
            logger.warning('[SeniorX] Arquivo de sessao ilegivel %s: %s', self.caminho, exc)
            return {}
        return dados if isinstance(dados, dict) else {}

    def _gravar(self, dados):
        pasta = os.path.dirname(os.path.abspath(self.caminho))
        os.makedirs(pasta, exist_ok=True)
        temporario = self.caminho + '.tmp'
        with open(temporario, 'w', encoding='utf-8') as arquivo:
            json.dump(dados, arquivo)
        os.replace(temporario, self.caminho)

    def obter(self, chave):
        return self._ler().get(chave)

    def definir(self, chave, valor):
        dados = self._ler()
        dados[chave] = valor
        self._gravar(dados)

    def remover(self, chave):
        dados = self._ler()
        if chave in dados:
            del dados[chave]
            self._gravar(dados)


class ArmazenamentoSessao:
    """
    Guarda o snapshot da identidade externa em tres chaves independentes:
    usuario (JSON), token de acesso e flag de modo embarcado.
    """

    def __init__(self, backend=None):
        self.backend = backend if backend is not None else BackendMemoria()

    def salvar(self, snapshot):
        self.backend.definir(CHAVE_USUARIO, json.dumps(snapshot.usuario.para_dict()))
        self.backend.definir(CHAVE_TOKEN, snapshot.token)
        self.backend.definir(
            CHAVE_MODO, 'true' if snapshot.modo == ModoSessao.EMBARCADO else 'false'
        )

    def carregar(self):
        usuario_bruto = self.backend.obter(CHAVE_USUARIO)
        token = self.backend.obter(CHAVE_TOKEN)
        modo = self.backend.obter(CHAVE_MODO)
        if usuario_bruto is None and token is None and modo is None:
            return None
        try:
            if not usuario_bruto or not token:
                raise ValueError('snapshot incompleto')
            usuario = IdentidadeExterna.de_dict(json.loads(usuario_bruto))
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            logger.error('[SeniorX] Erro ao carregar sessao armazenada: %s', exc)
            self.limpar()
            return None
        return SnapshotSessao(
            usuario=usuario,
            token=token,
            modo=ModoSessao.EMBARCADO if modo == 'true' else ModoSessao.STANDALONE,
        )

    def possui_dados(self):
        return any(
            self.backend.obter(chave) is not None
            for chave in (CHAVE_USUARIO, CHAVE_TOKEN, CHAVE_MODO)
        )

    def limpar(self):
        for chave in (CHAVE_USUARIO, CHAVE_TOKEN, CHAVE_MODO):
            self.backend.remover(chave)


# ============================================================================
# NORMALIZACAO USADA PELA TROCA DE TOKEN NO BACKEND
# ============================================================================

def normalizar_email(username, tenant_domain=None):
    """
    Converte o login da Senior X em e-mail.

    Logins que ja sao e-mail sao mantidos; o prefixo ``tenant~`` e removido e
    o dominio do tenant (ou o dominio raiz) e anexado.
    """
    if '@' in username:
        return username
    limpo = username.split('~')[-1] if '~' in username else username
    return f'{limpo}@{tenant_domain or DOMINIO_RAIZ_PADRAO}'
