# tests/conftest.py
import os
import tempfile
from urllib.parse import urlparse

import pytest

# ---------- Ambiente isolado (antes de importar a aplicação) ----------
_TMP = tempfile.mkdtemp(prefix='qualifica-testes-')
os.environ['DATABASE_URL'] = f"sqlite:///{os.path.join(_TMP, 'qualificacao.db')}"
os.environ['UPLOAD_FOLDER'] = os.path.join(_TMP, 'uploads')
os.environ['MAIL_SUPPRESS_SEND'] = 'true'
os.environ['JWT_SECRET_KEY'] = 'chave-jwt-dos-testes-com-tamanho-suficiente'
os.environ['ADMIN_EMAILS'] = 'admin@qualifica.com.br'
for _nome in ('AI_GATEWAY_URL', 'AI_API_KEY', 'FEEDBACK_EMAIL_DESTINO_TESTE', 'SENIORX_EXIGIR_TOKEN'):
    os.environ.pop(_nome, None)

from app import app as flask_app  # noqa: E402
from models import db  # noqa: E402

SENHA_PADRAO = 'senha123'


@pytest.fixture
def app():
    flask_app.config.update(
        TESTING=True,
        AI_GATEWAY_URL=None,
        AI_API_KEY=None,
        FEEDBACK_EMAIL_DESTINO_TESTE=None,
        SENIORX_EXIGIR_TOKEN=False,
    )
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
    yield flask_app
    with flask_app.app_context():
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


def cadastrar_e_entrar(client, email, senha=SENHA_PADRAO, nome=None):
    r = client.post('/api/auth/cadastro', json={'email': email, 'senha': senha, 'nome': nome})
    assert r.status_code == 201, r.get_data(as_text=True)
    r = client.post('/api/auth/login', json={'email': email, 'senha': senha})
    assert r.status_code == 200, r.get_data(as_text=True)
    return r.get_json()


@pytest.fixture
def auth_headers(client):
    sessao = cadastrar_e_entrar(client, 'analista@qualifica.com.br', nome='Ana Analista')
    return {'Authorization': f"Bearer {sessao['access_token']}"}


@pytest.fixture
def admin_headers(client):
    sessao = cadastrar_e_entrar(client, 'admin@qualifica.com.br', nome='Admin')
    return {'Authorization': f"Bearer {sessao['access_token']}"}


# ---------- Cadastros usados por vários testes ----------

def criar_fornecedor(client, headers, codigo, nome, cnpj='12.345.678/0001-90'):
    r = client.post('/api/fornecedores', json={'codigo': codigo, 'nome': nome, 'cnpj': cnpj}, headers=headers)
    assert r.status_code == 201, r.get_data(as_text=True)
    return r.get_json()


def criar_criterio(client, headers, codigo, descricao, grupo_id=None):
    r = client.post(
        '/api/criterios',
        json={'codigo': codigo, 'descricao': descricao, 'grupo_id': grupo_id},
        headers=headers,
    )
    assert r.status_code == 201, r.get_data(as_text=True)
    return r.get_json()


def qualificar(client, headers, fornecedor_id, notas, concluir=True):
    """Abre uma qualificação, grava as notas {criterio_id: score} e opcionalmente conclui."""
    r = client.post('/api/qualificacoes', json={'fornecedor_id': fornecedor_id}, headers=headers)
    assert r.status_code == 201, r.get_data(as_text=True)
    qualificacao = r.get_json()
    r = client.put(
        f"/api/qualificacoes/{qualificacao['id']}/criterios",
        json={'criterios': [{'criterio_id': c, 'score': s} for c, s in notas.items()]},
        headers=headers,
    )
    assert r.status_code == 200, r.get_data(as_text=True)
    if concluir:
        r = client.patch(f"/api/qualificacoes/{qualificacao['id']}", json={'status': 'concluido'}, headers=headers)
        assert r.status_code == 200, r.get_data(as_text=True)
    return r.get_json()


# ---------- Relógio virtual para o laço de solicitação ----------

class _TarefaVirtual:
    def __init__(self, quando, sequencia, callback):
        self.quando = quando
        self.sequencia = sequencia
        self.callback = callback
        self.cancelada = False

    def cancelar(self):
        self.cancelada = True


class RelogioVirtual:
    """Agendador determinístico: nada roda até o teste avançar o relógio."""

    def __init__(self):
        self.agora = 0.0
        self._tarefas = []
        self._sequencia = 0

    def agendar(self, atraso, callback):
        self._sequencia += 1
        tarefa = _TarefaVirtual(round(self.agora + atraso, 6), self._sequencia, callback)
        self._tarefas.append(tarefa)
        return tarefa

    @property
    def pendentes(self):
        return [t for t in self._tarefas if not t.cancelada]

    def avancar(self, segundos):
        limite = round(self.agora + segundos, 6)
        while True:
            prontas = [t for t in self.pendentes if t.quando <= limite]
            if not prontas:
                break
            proxima = min(prontas, key=lambda t: (t.quando, t.sequencia))
            self._tarefas.remove(proxima)
            self.agora = proxima.quando
            proxima.callback()
        self.agora = limite


@pytest.fixture
def relogio():
    return RelogioVirtual()


# ---------- Adaptador requests -> Flask test client ----------

class _RespostaHttp:
    def __init__(self, resposta):
        self.status_code = resposta.status_code
        self.reason = resposta.status
        self._dados = resposta.get_json(silent=True)

    def json(self):
        if self._dados is None:
            raise ValueError('resposta sem JSON')
        return self._dados


class SessaoHttpFlask:
    """Expõe o test client com a interface de requests.Session usada pelo ClienteAPI."""

    def __init__(self, client):
        self.client = client

    def request(self, metodo, url, headers=None, timeout=None, **kwargs):
        caminho = urlparse(url).path
        return _RespostaHttp(self.client.open(caminho, method=metodo, headers=headers or {}, **kwargs))
