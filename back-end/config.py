import os
from datetime import timedelta
from urllib.parse import urlparse, parse_qsl, urlencode, urlunparse


def _lista_ambiente(nome, padrao=''):
    valor = os.environ.get(nome, padrao)
    return [item.strip() for item in valor.split(',') if item.strip()]


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'secret-key-here')

    _database_url = os.environ.get('DATABASE_URL', 'sqlite:///qualificacao.db')

    if _database_url.startswith('postgres://'):
        _database_url = _database_url.replace(
            'postgres://', 'postgresql+psycopg2://', 1
        )

    if _database_url.startswith('postgresql'):
        parsed_url = urlparse(_database_url)
        query_params = dict(parse_qsl(parsed_url.query, keep_blank_values=True))

        query_params.setdefault('sslmode', 'require')

        parsed_url = parsed_url._replace(
            query=urlencode(query_params)
        )
        _database_url = urlunparse(parsed_url)

    SQLALCHEMY_DATABASE_URI = _database_url
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    _pool_recycle = int(os.environ.get('SQLALCHEMY_POOL_RECYCLE', 280))

    # SQLite nao aceita pool_size/max_overflow
    if _database_url.startswith('sqlite'):
        SQLALCHEMY_ENGINE_OPTIONS = {'pool_pre_ping': True}
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {
            'pool_pre_ping': True,
            'pool_recycle': _pool_recycle,
            'pool_size': 5,
            'max_overflow': 2,
        }

    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', SECRET_KEY)
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(
        minutes=int(os.environ.get('JWT_ACCESS_TOKEN_MINUTES', 60))
    )
    JWT_REFRESH_TOKEN_EXPIRES = timedelta(
        days=int(os.environ.get('JWT_REFRESH_TOKEN_DAYS', 30))
    )

    MAIL_SERVER = os.environ.get('MAIL_SERVER', 'smtp.gmail.com')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', 587))
    MAIL_USE_TLS = os.environ.get('MAIL_USE_TLS', 'true').lower() == 'true'
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get(
        'MAIL_DEFAULT_SENDER', 'Qualifica+ <nao-responda@qualificamais.com.br>'
    )
    MAIL_SUPPRESS_SEND = os.environ.get('MAIL_SUPPRESS_SEND', 'false').lower() == 'true'

    UPLOAD_FOLDER = os.environ.get(
        'UPLOAD_FOLDER',
        os.path.join(os.path.abspath(os.path.dirname(__file__)), 'uploads')
    )
    MAX_CONTENT_LENGTH = int(os.environ.get('MAX_CONTENT_LENGTH', 20 * 1024 * 1024))

    LINK_UNICO_VALIDADE_MINUTOS = int(os.environ.get('LINK_UNICO_VALIDADE_MINUTOS', 10))

    # Usuarios com estes e-mails recebem o papel admin no cadastro
    ADMIN_EMAILS = [e.lower() for e in _lista_ambiente('ADMIN_EMAILS')]

    SENIORX_DOMINIO_RAIZ = os.environ.get('SENIORX_DOMINIO_RAIZ', 'senior.com.br')
    SENIORX_ORIGENS_LEGADAS = _lista_ambiente(
        'SENIORX_ORIGENS_LEGADAS', 'platform.senior.com.br'
    )
    SENIORX_API_BASE = os.environ.get('SENIORX_API_BASE', 'https://cloud-leaf.senior.com.br')
    SENIORX_TIMEOUT_HTTP = float(os.environ.get('SENIORX_TIMEOUT_HTTP', 10))
    # Exige o token Senior X tambem na sincronizacao (x-senior-token).
    # Contas admin sempre exigem, mesmo com a flag desligada.
    SENIORX_EXIGIR_TOKEN = os.environ.get('SENIORX_EXIGIR_TOKEN', 'true').lower() == 'true'

    AI_GATEWAY_URL = os.environ.get('AI_GATEWAY_URL')
    AI_API_KEY = os.environ.get('AI_API_KEY')
    AI_MODELO = os.environ.get('AI_MODELO', 'google/gemini-2.5-flash')

    # Redireciona todos os e-mails de feedback para um unico endereco (homologacao)
    FEEDBACK_EMAIL_DESTINO_TESTE = os.environ.get('FEEDBACK_EMAIL_DESTINO_TESTE')

    CORS_ORIGENS_EXTRAS = _lista_ambiente('CORS_ORIGENS_EXTRAS')
