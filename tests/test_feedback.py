import pytest

import feedback
from utils import mail

from conftest import criar_criterio, criar_fornecedor, qualificar


@pytest.fixture
def fornecedor_avaliado(client, auth_headers):
    fornecedor = criar_fornecedor(client, auth_headers, 'F1', 'Alfa <Metais>')
    base = f"/api/fornecedores/{fornecedor['id']}/contatos"
    client.post(base, json={'nome': 'Carla', 'email': 'carla@alfa.com'}, headers=auth_headers)
    client.post(base, json={'nome': 'Davi', 'email': 'davi@alfa.com'}, headers=auth_headers)
    client.post(base, json={'nome': 'Sem Email'}, headers=auth_headers)
    prazo = criar_criterio(client, auth_headers, 'C1', 'Prazo de entrega')
    preco = criar_criterio(client, auth_headers, 'C2', 'Preço')
    qualificar(client, auth_headers, fornecedor['id'], {prazo['id']: 2, preco['id']: 4})
    return fornecedor


class _RespostaIA:
    def __init__(self, status_code, dados=None):
        self.status_code = status_code
        self.ok = status_code < 400
        self.text = ''
        self._dados = dados or {}

    def json(self):
        return self._dados


def test_feedback_enviado_aos_contatos(client, auth_headers, fornecedor_avaliado):
    with mail.record_messages() as enviados:
        r = client.post(f"/api/fornecedores/{fornecedor_avaliado['id']}/feedback", headers=auth_headers)
    assert r.status_code == 200, r.get_data(as_text=True)
    corpo = r.get_json()
    assert corpo['success'] is True
    assert corpo['recipients'] == ['carla@alfa.com', 'davi@alfa.com']
    assert corpo['originalRecipients'] == corpo['recipients']

    assert len(enviados) == 1
    mensagem = enviados[0]
    assert mensagem.subject == 'Relatório de Qualificação - Alfa <Metais>'
    assert 'Alfa &lt;Metais&gt;' in mensagem.html
    assert 'Olá, Carla!' in mensagem.html
    assert 'último mês' in mensagem.html
    assert feedback.TEXTO_SEM_SUGESTOES in mensagem.html
    # critério de pior nota aparece primeiro
    assert mensagem.html.index('Prazo de entrega') < mensagem.html.index('Preço')


def test_feedback_em_modo_de_teste(app, client, auth_headers, fornecedor_avaliado):
    app.config['FEEDBACK_EMAIL_DESTINO_TESTE'] = 'homologacao@qualifica.com.br'
    with mail.record_messages() as enviados:
        r = client.post(f"/api/fornecedores/{fornecedor_avaliado['id']}/feedback", headers=auth_headers)
    corpo = r.get_json()
    assert corpo['recipients'] == ['homologacao@qualifica.com.br']
    assert corpo['originalRecipients'] == ['carla@alfa.com', 'davi@alfa.com']
    assert enviados[0].recipients == ['homologacao@qualifica.com.br']
    assert enviados[0].subject.startswith('[TESTE]')


def test_feedback_com_sugestoes_da_ia(app, client, auth_headers, fornecedor_avaliado, monkeypatch):
    app.config.update(AI_GATEWAY_URL='https://ia.exemplo/v1/chat/completions', AI_API_KEY='chave')
    chamadas = []

    def _post(url, headers=None, json=None, timeout=None):
        chamadas.append(json)
        return _RespostaIA(200, {'choices': [{'message': {'content': 'Revise o planejamento logístico.'}}]})

    monkeypatch.setattr(feedback.requests, 'post', _post)
    with mail.record_messages() as enviados:
        r = client.post(f"/api/fornecedores/{fornecedor_avaliado['id']}/feedback", headers=auth_headers)
    assert r.status_code == 200
    assert 'Revise o planejamento logístico.' in enviados[0].html
    prompt = chamadas[0]['messages'][1]['content']
    assert 'Prazo de entrega (Código: C1)' in prompt
    assert 'Score médio: 2.0/5' in prompt


@pytest.mark.parametrize('status,mensagem', [
    (429, 'Limite de requisições excedido. Tente novamente mais tarde.'),
    (402, 'Créditos insuficientes. Adicione créditos ao workspace.'),
    (500, 'Erro ao gerar sugestões com IA'),
])
def test_feedback_erros_do_gateway(app, client, auth_headers, fornecedor_avaliado, monkeypatch, status, mensagem):
    app.config.update(AI_GATEWAY_URL='https://ia.exemplo/v1/chat/completions', AI_API_KEY='chave')
    monkeypatch.setattr(feedback.requests, 'post', lambda *a, **k: _RespostaIA(status))
    with mail.record_messages() as enviados:
        r = client.post(f"/api/fornecedores/{fornecedor_avaliado['id']}/feedback", headers=auth_headers)
    assert r.status_code == 400
    assert r.get_json()['message'] == mensagem
    assert enviados == []


def test_feedback_sem_condicoes_de_envio(client, auth_headers):
    assert client.post('/api/fornecedores/999/feedback', headers=auth_headers).get_json()['message'] == \
        'Fornecedor não encontrado'

    fornecedor = criar_fornecedor(client, auth_headers, 'F1', 'Alfa')
    url = f"/api/fornecedores/{fornecedor['id']}/feedback"
    r = client.post(url, headers=auth_headers)
    assert r.status_code == 400
    assert r.get_json()['message'] == 'Fornecedor não possui contatos com email cadastrado'

    client.post(f"/api/fornecedores/{fornecedor['id']}/contatos",
                json={'nome': 'Carla', 'email': 'carla@alfa.com'}, headers=auth_headers)
    criterio = criar_criterio(client, auth_headers, 'C1', 'Prazo')
    qualificar(client, auth_headers, fornecedor['id'], {criterio['id']: 3}, concluir=False)
    r = client.post(url, headers=auth_headers)
    assert r.status_code == 400
    assert r.get_json()['message'] == 'Fornecedor não possui qualificações concluídas'
