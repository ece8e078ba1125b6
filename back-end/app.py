from flask import Flask, request, jsonify, send_from_directory, url_for
from flask_jwt_extended import (
    JWTManager, create_access_token, create_refresh_token, decode_token, jwt_required,
    get_jwt_identity, get_jwt
)
from config import Config
from models import (
    db, Usuario, LinkUnicoAcesso, TokenRevogado, Fornecedor, FornecedorContato,
    GrupoQualificacao, Criterio, Qualificacao, QualificacaoCriterio, QualificacaoAnexo
)
from utils import (
    mail, enviar_email, gerar_token_recuperacao, gerar_token_hash, gerar_senha_aleatoria,
    escalar_score, media, arredondar, ordenar_registros, paginar,
    SCORE_MINIMO, SCORE_MAXIMO
)
from seniorx import origem_confiavel, normalizar_email, normalizar_nome_completo
from painel import montar_dashboard, desempenho_fornecedor
from feedback import enviar_feedback_fornecedor, FeedbackError
from werkzeug.security import generate_password_hash, check_password_hash
from werkzeug.utils import secure_filename
from werkzeug.exceptions import NotFound
import hashlib
import mimetypes
import os
import shutil
import requests
from flask_cors import CORS
from datetime import datetime, date, timedelta
from flask_migrate import Migrate
from sqlalchemy import or_, func, inspect, text
from sqlalchemy.exc import IntegrityError

# ============================================================================
# CONFIGURAÇÃO INICIAL DA APLICAÇÃO
# ============================================================================

# Instância principal da aplicação Flask
app = Flask(__name__)

# Carrega configurações do arquivo config.py (banco de dados, e-mail, JWT, Senior X, etc.)
app.config.from_object(Config)

# Extensões de arquivo permitidas para anexos das qualificações
ALLOWED_EXTENSIONS = {'pdf', 'png', 'jpg', 'jpeg', 'docx', 'xlsx'}

STATUS_QUALIFICACAO = {'pendente', 'concluido'}
SITUACOES = {'ativo', 'inativo'}
PROVEDOR_SENIORX = 'seniorx'

# ============================================================================
# CONFIGURAÇÃO DE CORS (Cross-Origin Resource Sharing)
# ============================================================================

# Origens de desenvolvimento; produção entra por CORS_ORIGENS_EXTRAS
ALLOWED_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
] + list(app.config.get('CORS_ORIGENS_EXTRAS') or [])

CORS(
    app,
    resources={
        r"/api/*": {
            "origins": ALLOWED_CORS_ORIGINS,
            "methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            "allow_headers": [
                "Content-Type",
                "Authorization",
                "X-Requested-With",
                "Accept",
                "Origin",
                "X-Senior-Token",
            ],
            "expose_headers": ["Content-Disposition", "Content-Type"],
            "supports_credentials": True,
            "max_age": 3600
        }
    },
)

# ============================================================================
# INICIALIZAÇÃO DE EXTENSÕES FLASK
# ============================================================================

db.init_app(app)
jwt = JWTManager(app)
mail.init_app(app)
migrate = Migrate(app, db)


def _origem_seniorx(origem):
    return origem_confiavel(
        origem,
        app.config['SENIORX_DOMINIO_RAIZ'],
        app.config['SENIORX_ORIGENS_LEGADAS'],
    )


def _politica_frame_ancestors():
    """
    Monta a diretiva frame-ancestors do Content-Security-Policy.

    A aplicação roda dentro de um iframe da Senior X, então o domínio raiz
    confiável e seus subdomínios (e os hosts legados) podem embarcá-la.
    """
    raiz = app.config['SENIORX_DOMINIO_RAIZ']
    fontes = ["'self'", f'https://{raiz}', f'https://*.{raiz}']
    fontes += [f'https://{host}' for host in app.config['SENIORX_ORIGENS_LEGADAS']]
    return 'frame-ancestors ' + ' '.join(fontes)


def _adicionar_headers_cors(response):
    """
    Adiciona headers CORS e a política de embarque em uma resposta.

    Origens da lista permitida, localhost e domínios Senior X confiáveis
    recebem Access-Control-Allow-Origin.

    Args:
        response: Objeto Response do Flask

    Returns:
        Response com headers adicionados
    """
    origin = request.headers.get('Origin')

    if 'Access-Control-Allow-Origin' not in response.headers and origin:
        if origin in ALLOWED_CORS_ORIGINS:
            response.headers.add('Access-Control-Allow-Origin', origin)
        elif _origem_seniorx(origin):
            response.headers.add('Access-Control-Allow-Origin', origin)
        elif 'localhost' in origin or '127.0.0.1' in origin:
            # Permite localhost em desenvolvimento
            response.headers.add('Access-Control-Allow-Origin', origin)

    if 'Access-Control-Allow-Credentials' not in response.headers:
        response.headers.add('Access-Control-Allow-Credentials', 'true')
    if 'Access-Control-Allow-Headers' not in response.headers:
        response.headers.add('Access-Control-Allow-Headers',
                             'Content-Type, Authorization, X-Requested-With, Accept, Origin, X-Senior-Token')
    if 'Content-Security-Policy' not in response.headers:
        response.headers['Content-Security-Policy'] = _politica_frame_ancestors()

    return response


# ============================================================================
# JWT: REVOGAÇÃO E RESPOSTAS DE ERRO
# ============================================================================

@jwt.token_in_blocklist_loader
def token_esta_revogado(jwt_header, jwt_payload):
    """Consulta a tabela de tokens revogados no logout."""
    jti = jwt_payload.get('jti')
    return db.session.query(TokenRevogado.id).filter_by(jti=jti).first() is not None


@jwt.expired_token_loader
def token_expirado(jwt_header, jwt_payload):
    return jsonify(message='Sessão expirada, faça login novamente.'), 401


@jwt.invalid_token_loader
def token_invalido(motivo):
    app.logger.error(f'Token JWT inválido: {motivo}')
    return jsonify(message='Token inválido.'), 401


@jwt.unauthorized_loader
def token_ausente(motivo):
    return jsonify(message='Autenticação necessária.'), 401


@jwt.revoked_token_loader
def token_revogado(jwt_header, jwt_payload):
    return jsonify(message='Sessão encerrada, faça login novamente.'), 401


# ============================================================================
# FUNÇÕES AUXILIARES
# ============================================================================

def _dados_requisicao():
    return request.get_json(silent=True) or {}


def _texto(valor):
    if valor is None:
        return None
    valor = str(valor).strip()
    return valor or None


def _iso(valor):
    return valor.isoformat() if valor else None


def _parse_data(valor):
    """
    Converte a data de recebimento enviada pelo front (AAAA-MM-DD).

    Raises:
        ValueError: formato inválido
    """
    if not valor:
        return date.today()
    if isinstance(valor, date):
        return valor
    return date.fromisoformat(str(valor)[:10])


def _digest_token(token):
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _papel_para(email):
    return 'admin' if email in app.config.get('ADMIN_EMAILS', []) else 'user'


def _usuario_autenticado():
    identidade = get_jwt_identity()
    try:
        return db.session.get(Usuario, int(identidade))
    except (TypeError, ValueError):
        return None


def _admin_usuario_autorizado():
    """
    Verifica se o usuário autenticado possui papel de administrador.

    Returns:
        True se o token JWT contém a claim role='admin'
    """
    try:
        claims = get_jwt()
    except Exception as exc:
        app.logger.error(f'Falha ao ler claims do token: {exc}')
        return False
    return claims.get('role') == 'admin'


def _usuario_publico(usuario):
    return {
        'id': usuario.id,
        'email': usuario.email,
        'full_name': usuario.nome,
        'auth_provider': usuario.auth_provider,
        'senior_user_id': usuario.senior_user_id,
        'role': usuario.papel,
    }


def _resposta_sessao(usuario):
    """
    Emite o par de tokens de uma sessão própria.

    Returns:
        Dicionário {"access_token", "refresh_token", "expires_in", "token_type", "user"}
    """
    claims = {'role': usuario.papel, 'email': usuario.email}
    identidade = str(usuario.id)
    return {
        'access_token': create_access_token(identity=identidade, additional_claims=claims),
        'refresh_token': create_refresh_token(identity=identidade, additional_claims=claims),
        'expires_in': int(app.config['JWT_ACCESS_TOKEN_EXPIRES'].total_seconds()),
        'token_type': 'bearer',
        'user': _usuario_publico(usuario),
    }


def _responder_lista(registros):
    """
    Aplica ordenação e paginação pedidas na query string.

    Parâmetros aceitos: ordenar (campo), direcao (asc/desc), pagina e por_pagina.
    """
    ordenados = ordenar_registros(
        registros,
        request.args.get('ordenar'),
        (request.args.get('direcao') or 'asc').lower(),
    )
    itens, paginacao = paginar(
        ordenados,
        request.args.get('pagina', type=int),
        request.args.get('por_pagina', type=int),
    )
    return jsonify(itens=itens, paginacao=paginacao), 200


def _arquivo_permitido(nome):
    return '.' in nome and nome.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def _alternar_situacao(registro):
    registro.situacao = 'inativo' if registro.situacao == 'ativo' else 'ativo'
    return registro.situacao


# ---------------------------------------------------------------------------
# Serialização
# ---------------------------------------------------------------------------

def _serializar_fornecedor(fornecedor):
    return {
        'id': fornecedor.id,
        'codigo': fornecedor.codigo,
        'nome': fornecedor.nome,
        'cnpj': fornecedor.cnpj,
        'endereco': fornecedor.endereco,
        'situacao': fornecedor.situacao,
        'score_atual': fornecedor.score_atual,
        'total_avaliacoes': fornecedor.total_avaliacoes,
        'criado_em': _iso(fornecedor.criado_em),
        'atualizado_em': _iso(fornecedor.atualizado_em),
    }


def _serializar_contato(contato):
    return {
        'id': contato.id,
        'fornecedor_id': contato.fornecedor_id,
        'nome': contato.nome,
        'email': contato.email,
        'whatsapp': contato.whatsapp,
        'criado_em': _iso(contato.criado_em),
    }


def _serializar_grupo(grupo, criterios_count=None):
    return {
        'id': grupo.id,
        'codigo': grupo.codigo,
        'descricao': grupo.descricao,
        'situacao': grupo.situacao,
        'criterios_count': criterios_count if criterios_count is not None else len(grupo.criterios),
        'criado_em': _iso(grupo.criado_em),
    }


def _serializar_criterio(criterio):
    return {
        'id': criterio.id,
        'codigo': criterio.codigo,
        'descricao': criterio.descricao,
        'grupo_id': criterio.grupo_id,
        'grupo_descricao': criterio.grupo.descricao if criterio.grupo else None,
        'situacao': criterio.situacao,
        'criado_em': _iso(criterio.criado_em),
    }


def _serializar_anexo(anexo):
    return {
        'id': anexo.id,
        'documento_id': anexo.documento_id,
        'criterio_id': anexo.criterio_id,
        'file_name': anexo.file_name,
        'file_path': anexo.file_path,
        'file_type': anexo.file_type,
        'file_size': anexo.file_size,
        'url': url_for('arquivo_publico', caminho=anexo.file_path, _external=True),
        'criado_em': _iso(anexo.criado_em),
    }


def _serializar_avaliacao(avaliacao):
    return {
        'id': avaliacao.id,
        'criterio_id': avaliacao.criterio_id,
        'criterio_codigo': avaliacao.criterio.codigo if avaliacao.criterio else None,
        'criterio_descricao': avaliacao.criterio.descricao if avaliacao.criterio else None,
        'score': avaliacao.score,
        'score_percentual': escalar_score(avaliacao.score),
        'observacao': avaliacao.observacao,
    }


def _serializar_qualificacao(qualificacao, detalhado=False):
    nota_media = media([a.score for a in qualificacao.avaliacoes])
    dados = {
        'id': qualificacao.id,
        'codigo': qualificacao.codigo,
        'fornecedor_id': qualificacao.fornecedor_id,
        'fornecedor_nome': qualificacao.fornecedor.nome if qualificacao.fornecedor else None,
        'fornecedor_codigo': qualificacao.fornecedor.codigo if qualificacao.fornecedor else None,
        'data_recebimento': _iso(qualificacao.data_recebimento),
        'serie_nf': qualificacao.serie_nf,
        'numero_nf': qualificacao.numero_nf,
        'observacao': qualificacao.observacao,
        'status': qualificacao.status,
        'avg_score': arredondar(escalar_score(nota_media)) if nota_media is not None else None,
        'criado_em': _iso(qualificacao.criado_em),
        'atualizado_em': _iso(qualificacao.atualizado_em),
    }
    if detalhado:
        dados['avaliacoes'] = [_serializar_avaliacao(a) for a in qualificacao.avaliacoes]
        dados['anexos'] = [_serializar_anexo(a) for a in qualificacao.anexos]
    return dados


# ---------------------------------------------------------------------------
# Score do fornecedor
# ---------------------------------------------------------------------------

def _recalcular_score_fornecedor(fornecedor_id):
    """
    Recalcula score_atual e total_avaliacoes de um fornecedor.

    O score é a média das médias das qualificações concluídas, convertida
    para a escala 0-100. Sem qualificação concluída com notas o score fica nulo.
    """
    fornecedor = db.session.get(Fornecedor, fornecedor_id)
    if fornecedor is None:
        return None
    concluidas = Qualificacao.query.filter_by(fornecedor_id=fornecedor_id, status='concluido').all()
    medias = [media([a.score for a in q.avaliacoes]) for q in concluidas]
    medias = [m for m in medias if m is not None]
    score = media(medias)
    fornecedor.score_atual = round(escalar_score(score), 2) if score is not None else None
    fornecedor.total_avaliacoes = len(medias)
    return fornecedor


# ---------------------------------------------------------------------------
# Senior X
# ---------------------------------------------------------------------------

def _token_seniorx_da_requisicao():
    """
    Extrai o token Senior X dos headers da requisição.

    Ordem: header x-senior-token, Authorization "SeniorX <token>" e, por fim,
    um Authorization "Bearer" que não tenha o formato de um JWT próprio.
    """
    token = _texto(request.headers.get('X-Senior-Token'))
    if token:
        return token
    autorizacao = request.headers.get('Authorization') or ''
    if autorizacao.startswith('SeniorX '):
        return _texto(autorizacao[len('SeniorX '):])
    if autorizacao.startswith('Bearer '):
        candidato = autorizacao[len('Bearer '):].strip()
        if candidato and len(candidato.split('.')) != 3:
            return candidato
    return None


def _validar_token_seniorx(token):
    """
    Valida um token na API da plataforma Senior X.

    Args:
        token: Token de acesso emitido pela Senior X

    Returns:
        Dicionário {"id", "username", "email", "fullName", "tenantDomain"} ou
        None quando o token é recusado ou a plataforma não responde
    """
    url = f"{app.config['SENIORX_API_BASE']}/t/senior.com.br/bridge/1.0/rest/platform/user/queries/getUser"
    try:
        resposta = requests.get(
            url,
            headers={'Authorization': f'Bearer {token}', 'Content-Type': 'application/json'},
            timeout=app.config['SENIORX_TIMEOUT_HTTP'],
        )
    except requests.RequestException as exc:
        app.logger.error(f'Erro ao validar token Senior X: {exc}')
        return None
    if not resposta.ok:
        app.logger.error(f'Token Senior X recusado: {resposta.status_code} {resposta.reason}')
        return None
    try:
        dados = resposta.json() or {}
    except ValueError:
        app.logger.error('Resposta da Senior X não é JSON')
        return None

    usuario = dados.get('user') or {}
    tenant = dados.get('tenant') or {}
    username = dados.get('username') or dados.get('login') or usuario.get('username')
    return {
        'id': dados.get('id') or dados.get('userId') or usuario.get('id'),
        'username': username,
        'email': dados.get('email') or usuario.get('email'),
        'fullName': dados.get('fullName') or dados.get('name') or usuario.get('fullName') or username,
        'tenantDomain': dados.get('tenantDomain') or tenant.get('domain'),
    }


def _obter_ou_criar_usuario_externo(email, nome, senior_user_id, atualizar=False):
    """
    Localiza o usuário pelo e-mail ou cria um novo com senha aleatória.

    Returns:
        Tupla (usuario, criado)
    """
    usuario = Usuario.query.filter(func.lower(Usuario.email) == email).first()
    if usuario:
        if atualizar:
            usuario.nome = nome or usuario.nome
            usuario.senior_user_id = senior_user_id or usuario.senior_user_id
            usuario.auth_provider = PROVEDOR_SENIORX
        return usuario, False
    usuario = Usuario(
        email=email,
        senha=generate_password_hash(gerar_senha_aleatoria(), method='pbkdf2:sha256'),
        nome=nome,
        papel=_papel_para(email),
        auth_provider=PROVEDOR_SENIORX,
        senior_user_id=senior_user_id,
    )
    db.session.add(usuario)
    db.session.flush()
    return usuario, True


def _conta_privilegiada(email):
    """True quando o e-mail pertence (ou pertencerá) a um administrador."""
    if _papel_para(email) == 'admin':
        return True
    usuario = Usuario.query.filter(func.lower(Usuario.email) == email).first()
    return usuario is not None and usuario.papel == 'admin'


def _criar_link_unico(usuario):
    """Gera um link de acesso de uso único; o banco guarda apenas o SHA-256."""
    token = gerar_token_hash()
    link = LinkUnicoAcesso(
        usuario_id=usuario.id,
        token_digest=_digest_token(token),
        tipo='magiclink',
        expira_em=datetime.utcnow() + timedelta(minutes=app.config['LINK_UNICO_VALIDADE_MINUTOS']),
    )
    db.session.add(link)
    return token


# ============================================================================
# AJUSTES INCREMENTAIS DE SCHEMA
# ============================================================================

def _ensure_usuarios_schema():
    """
    Garante que a tabela usuarios tenha as colunas do login Senior X.

    Bancos criados antes da integração não possuem auth_provider e
    senior_user_id; as colunas são adicionadas sem precisar de migração.
    """
    try:
        inspector = inspect(db.engine)
    except Exception as exc:
        print(f'Não foi possivel inspecionar o banco para atualizar os usuarios: {exc}')
        return
    if 'usuarios' not in inspector.get_table_names():
        return
    existing_columns = {col['name'] for col in inspector.get_columns('usuarios')}
    alter_statements = []
    if 'auth_provider' not in existing_columns:
        alter_statements.append(('auth_provider', "VARCHAR(20) DEFAULT 'primary' NOT NULL"))
    if 'senior_user_id' not in existing_columns:
        alter_statements.append(('senior_user_id', 'VARCHAR(200)'))
    if not alter_statements:
        return
    try:
        with db.engine.begin() as connection:
            for column_name, ddl in alter_statements:
                connection.execute(text(f'ALTER TABLE usuarios ADD COLUMN {column_name} {ddl}'))
                print(f'Coluna {column_name} adicionada a usuarios')
    except Exception as exc:
        print(f'Erro ao ajustar schema de usuarios: {exc}')


# ============================================================================
# INICIALIZAÇÃO DO BANCO DE DADOS
# ============================================================================

with app.app_context():
    db.create_all()
    _ensure_usuarios_schema()


@app.after_request
def after_request(response):
    """Adiciona headers CORS e a política de embarque a todas as respostas."""
    return _adicionar_headers_cors(response)


@app.route('/')
def home():
    return "Bem-vindo ao Qualifica+!"


# ============================================================================
# AUTENTICAÇÃO PRÓPRIA
# ============================================================================

@app.route('/api/auth/cadastro', methods=['POST'])
def cadastrar_usuario():
    """
    Endpoint para cadastro de usuários com e-mail e senha.

    A senha é criptografada com PBKDF2/SHA-256 antes de ser armazenada. E-mails
    listados em ADMIN_EMAILS recebem o papel admin.

    Request Body (JSON):
        - email (str, obrigatório): E-mail do usuário
        - senha (str, obrigatório): Senha com pelo menos 6 caracteres
        - nome (str, opcional): Nome completo

    Returns:
        - 201 (Created): {"message": "Usuário cadastrado com sucesso", "user": {...}}
        - 400 (Bad Request): Dados incompletos ou senha curta
        - 409 (Conflict): E-mail já cadastrado
        - 500 (Internal Server Error): Erro ao processar o cadastro

    Exemplo de requisição:
        POST /api/auth/cadastro
        {
            "email": "ana@empresa.com.br",
            "senha": "senhaSegura123",
            "nome": "Ana Souza"
        }
    """
    try:
        data = _dados_requisicao()
        email = (data.get('email') or '').strip().lower()
        senha = data.get('senha') or ''
        if not email or not senha:
            return jsonify(message="Dados incompletos, verifique os campos."), 400
        if len(senha) < 6:
            return jsonify(message="A senha deve ter pelo menos 6 caracteres."), 400
        if Usuario.query.filter(func.lower(Usuario.email) == email).first():
            return jsonify(message="E-mail já cadastrado."), 409

        usuario = Usuario(
            email=email,
            senha=generate_password_hash(senha, method='pbkdf2:sha256'),
            nome=_texto(data.get('nome')),
            papel=_papel_para(email),
        )
        db.session.add(usuario)
        db.session.commit()
        app.logger.info(f"Usuário cadastrado: {email}")
        return jsonify(message="Usuário cadastrado com sucesso", user=_usuario_publico(usuario)), 201
    except IntegrityError:
        db.session.rollback()
        return jsonify(message="E-mail já cadastrado."), 409
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao cadastrar usuário: {e}")
        return jsonify(message="Erro ao cadastrar usuário: " + str(e)), 500


@app.route('/api/auth/login', methods=['POST'])
def login():
    """
    Endpoint de autenticação com e-mail e senha.

    Request Body (JSON):
        - email (str, obrigatório)
        - senha (str, obrigatório)

    Returns:
        - 200 (OK): Sessão própria
            {
                "access_token": "eyJ0eXAiOiJKV1QiLCJhbGc...",
                "refresh_token": "eyJ0eXAiOiJKV1QiLCJhbGc...",
                "expires_in": 3600,
                "token_type": "bearer",
                "user": {"id": 1, "email": "...", "full_name": "...", "auth_provider": "primary"}
            }
        - 400 (Bad Request): E-mail ou senha não fornecidos
        - 401 (Unauthorized): Credenciais inválidas
        - 500 (Internal Server Error): Erro ao autenticar
    """
    try:
        data = _dados_requisicao()
        email = (data.get("email") or '').strip().lower()
        senha = data.get("senha")
        if not email or not senha:
            app.logger.error("Login falhou, email ou senha não fornecidos")
            return jsonify(message="Email e senha são obrigatórios."), 400

        usuario = Usuario.query.filter(func.lower(Usuario.email) == email).first()
        if not usuario or not check_password_hash(usuario.senha, senha):
            app.logger.error(f"Credenciais inválidas para {email}")
            return jsonify(message="Credenciais inválidas"), 401

        app.logger.info(f"Sessão criada para {usuario.email}")
        return jsonify(_resposta_sessao(usuario)), 200
    except Exception as e:
        app.logger.error(f"Erro no login: {str(e)}")
        return jsonify(message="Erro ao autenticar, tente novamente mais tarde."), 500


@app.route('/api/auth/refresh', methods=['POST'])
@jwt_required(refresh=True)
def renovar_sessao():
    """
    Troca um refresh token válido por um novo access token.

    Headers:
        Authorization (obrigatório): Bearer <refresh_token>

    Returns:
        - 200 (OK): {"access_token": "...", "expires_in": 3600}
        - 401 (Unauthorized): Refresh token inválido, expirado ou usuário removido
    """
    usuario = _usuario_autenticado()
    if usuario is None:
        return jsonify(message='Usuário não encontrado.'), 401
    token = create_access_token(
        identity=str(usuario.id),
        additional_claims={'role': usuario.papel, 'email': usuario.email},
    )
    return jsonify(
        access_token=token,
        expires_in=int(app.config['JWT_ACCESS_TOKEN_EXPIRES'].total_seconds()),
    ), 200


@app.route('/api/auth/sessao', methods=['GET'])
@jwt_required()
def obter_sessao():
    """Retorna o usuário da sessão atual; 401 quando ausente, expirada ou revogada."""
    usuario = _usuario_autenticado()
    if usuario is None:
        return jsonify(message='Usuário não encontrado.'), 401
    return jsonify(user=_usuario_publico(usuario)), 200


@app.route('/api/auth/logout', methods=['POST'])
@jwt_required()
def logout():
    """
    Encerra a sessão revogando o token atual e o refresh token da sessão.

    Os jti entram na tabela tokens_revogados, consultada a cada requisição
    autenticada.

    Request Body (JSON, opcional):
        - refresh_token (str): Refresh token do mesmo usuário

    Returns:
        - 200 (OK): Sessão encerrada
        - 400 (Bad Request): refresh_token inválido ou de outro usuário
    """
    try:
        jtis = [get_jwt()['jti']]
        refresh_token = _texto(_dados_requisicao().get('refresh_token'))
        if refresh_token:
            try:
                dados_refresh = decode_token(refresh_token, allow_expired=True)
            except Exception as exc:
                app.logger.error(f"Refresh token inválido no logout: {exc}")
                return jsonify(message='Refresh token inválido.'), 400
            if dados_refresh.get('type') != 'refresh' or str(dados_refresh.get('sub')) != get_jwt_identity():
                return jsonify(message='Refresh token inválido.'), 400
            jtis.append(dados_refresh['jti'])
        for jti in jtis:
            if not TokenRevogado.query.filter_by(jti=jti).first():
                db.session.add(TokenRevogado(jti=jti))
        db.session.commit()
        return jsonify(message='Sessão encerrada.'), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao encerrar sessão: {e}")
        return jsonify(message='Erro ao encerrar sessão.'), 500


@app.route('/api/auth/recuperar-senha', methods=['POST'])
def recuperar_senha():
    """
    Endpoint para solicitar recuperação de senha.

    Gera um token numérico de 6 dígitos com validade de 10 minutos e envia por
    e-mail. O token é usado em /api/auth/redefinir-senha.

    Request Body (JSON):
        - email (str, obrigatório)

    Returns:
        - 200 (OK): {"message": "Token enviado para o e-mail cadastrado."}
        - 400 (Bad Request): E-mail não informado
        - 404 (Not Found): E-mail não cadastrado
        - 500 (Internal Server Error): Falha ao enviar o e-mail
    """
    try:
        email = (_dados_requisicao().get('email') or '').strip().lower()
        if not email:
            return jsonify(message='E-mail é obrigatório.'), 400
        usuario = Usuario.query.filter(func.lower(Usuario.email) == email).first()
        if not usuario:
            return jsonify(message='E-mail não encontrado.'), 404

        token = gerar_token_recuperacao()
        usuario.token_recuperacao = token
        usuario.token_expira = datetime.utcnow() + timedelta(minutes=10)
        db.session.commit()

        corpo = f"""
        <p>Olá{', ' + usuario.nome if usuario.nome else ''}!</p>
        <p>Use o código abaixo para redefinir sua senha no Qualifica+. Ele expira em 10 minutos.</p>
        <h2 style="letter-spacing: 4px;">{token}</h2>
        <p>Se você não solicitou a recuperação, ignore este e-mail.</p>
        """
        enviar_email(usuario.email, 'Recuperação de senha - Qualifica+', corpo)
        app.logger.info(f"Token de recuperação enviado para {usuario.email}")
        return jsonify(message='Token enviado para o e-mail cadastrado.'), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao recuperar senha: {e}")
        return jsonify(message='Erro ao enviar e-mail de recuperação.'), 500


@app.route('/api/auth/redefinir-senha', methods=['POST'])
def redefinir_senha():
    """
    Redefine a senha a partir do token enviado por e-mail.

    Request Body (JSON):
        - token (str, obrigatório): Código de 6 dígitos
        - nova_senha (str, obrigatório): Nova senha, mínimo de 6 caracteres
        - email (str, opcional): Restringe a busca ao usuário informado

    Returns:
        - 200 (OK): {"message": "Senha redefinida com sucesso."}
        - 400 (Bad Request): Dados incompletos, token inválido ou expirado
    """
    try:
        data = _dados_requisicao()
        token = _texto(data.get('token'))
        nova_senha = data.get('nova_senha') or ''
        if not token or not nova_senha:
            return jsonify(message='Token e nova senha são obrigatórios.'), 400
        if len(nova_senha) < 6:
            return jsonify(message='A senha deve ter pelo menos 6 caracteres.'), 400

        consulta = Usuario.query.filter_by(token_recuperacao=token)
        email = (data.get('email') or '').strip().lower()
        if email:
            consulta = consulta.filter(func.lower(Usuario.email) == email)
        usuario = consulta.first()
        if not usuario or not usuario.token_expira or usuario.token_expira < datetime.utcnow():
            return jsonify(message='Token inválido ou expirado.'), 400

        usuario.senha = generate_password_hash(nova_senha, method='pbkdf2:sha256')
        usuario.token_recuperacao = None
        usuario.token_expira = None
        db.session.commit()
        return jsonify(message='Senha redefinida com sucesso.'), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao redefinir senha: {e}")
        return jsonify(message='Erro ao redefinir senha.'), 500


# ============================================================================
# SENIOR X
# ============================================================================

@app.route('/api/seniorx/sincronizar', methods=['POST'])
def sincronizar_usuario_seniorx():
    """
    Sincroniza um usuário autenticado na Senior X com a base própria.

    Localiza o usuário pelo e-mail (ou cria um novo com senha aleatória e
    auth_provider "seniorx") e gera um link de acesso de uso único, válido por
    LINK_UNICO_VALIDADE_MINUTOS. O front troca o token_hash por uma sessão em
    /api/auth/verificar-otp.

    Com SENIORX_EXIGIR_TOKEN ativo (padrão), o token Senior X também precisa
    ser enviado (x-senior-token) e o e-mail dele deve coincidir com o do corpo.
    Contas com papel admin exigem o token mesmo com a flag desligada.

    Request Body (JSON):
        - email (str, obrigatório)
        - fullName (str, opcional)
        - seniorUserId (str, opcional)

    Returns:
        - 200 (OK): {"success": true, "userId": 7, "token_hash": "9f2c...", "email": "ana@empresa.com.br"}
        - 400 (Bad Request): {"error": "Email é obrigatório"}
        - 401 (Unauthorized): Token Senior X ausente, inválido ou de outro usuário (quando exigido)
        - 409 (Conflict): Conflito ao criar o usuário
        - 500 (Internal Server Error): {"error": "<detalhes>"}

    Exemplo de requisição:
        POST /api/seniorx/sincronizar
        {
            "email": "ana@empresa.com.br",
            "fullName": "Ana Souza",
            "seniorUserId": "8d1e..."
        }
    """
    data = _dados_requisicao()
    email = (data.get('email') or '').strip().lower()
    if not email:
        return jsonify(error='Email é obrigatório'), 400
    nome = normalizar_nome_completo(data.get('fullName')) or None
    senior_user_id = _texto(data.get('seniorUserId'))

    if app.config.get('SENIORX_EXIGIR_TOKEN') or _conta_privilegiada(email):
        token = _token_seniorx_da_requisicao()
        usuario_seniorx = _validar_token_seniorx(token) if token else None
        if not usuario_seniorx:
            app.logger.error(f"[SeniorX] Sincronização de {email} recusada: token ausente ou inválido")
            return jsonify(error='Token Senior X inválido ou expirado'), 401
        email_token = normalizar_email(
            usuario_seniorx['email'] or usuario_seniorx['username'] or '',
            usuario_seniorx['tenantDomain'],
        ).lower()
        if email_token != email:
            app.logger.error(f"[SeniorX] E-mail {email} diverge do token ({email_token})")
            return jsonify(error='Token Senior X não corresponde ao usuário'), 401

    try:
        usuario, criado = _obter_ou_criar_usuario_externo(email, nome, senior_user_id)
        token_hash = _criar_link_unico(usuario)
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        app.logger.error(f"[SeniorX] Conflito ao criar usuário {email}: {e}")
        return jsonify(error='Conflito ao criar usuário'), 409
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"[SeniorX] Erro ao sincronizar usuário {email}: {e}")
        return jsonify(error=str(e) or 'Erro interno'), 500

    app.logger.info(f"[SeniorX] Usuário {'criado' if criado else 'localizado'}: {email}")
    return jsonify(success=True, userId=usuario.id, token_hash=token_hash, email=usuario.email), 200


@app.route('/api/auth/verificar-otp', methods=['POST'])
def verificar_otp():
    """
    Troca um link de uso único por uma sessão própria.

    Request Body (JSON):
        - token_hash (str, obrigatório): Valor devolvido por /api/seniorx/sincronizar
        - type (str, opcional): Somente "magiclink"

    Returns:
        - 200 (OK): Sessão no mesmo formato de /api/auth/login
        - 400 (Bad Request): token_hash ausente ou tipo não suportado
        - 401 (Unauthorized): Link desconhecido, expirado ou já utilizado
    """
    try:
        data = _dados_requisicao()
        token_hash = _texto(data.get('token_hash'))
        tipo = data.get('type') or 'magiclink'
        if not token_hash:
            return jsonify(message='token_hash é obrigatório.'), 400
        if tipo != 'magiclink':
            return jsonify(message='Tipo de verificação não suportado.'), 400

        link = LinkUnicoAcesso.query.filter_by(token_digest=_digest_token(token_hash), tipo=tipo).first()
        agora = datetime.utcnow()
        if not link or link.usado_em is not None or link.expira_em < agora:
            app.logger.error('Link de acesso inválido, expirado ou já utilizado')
            return jsonify(message='Link inválido ou expirado.'), 401

        link.usado_em = agora
        db.session.commit()
        return jsonify(_resposta_sessao(link.usuario)), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao verificar link de acesso: {e}")
        return jsonify(message='Erro ao verificar link de acesso.'), 500


@app.route('/api/auth/trocar-token', methods=['POST'])
def trocar_token_seniorx():
    """
    Troca um token Senior X diretamente por uma sessão própria.

    O token é lido de x-senior-token, de "Authorization: SeniorX <token>" ou de
    um Bearer que não seja JWT, e validado na API da plataforma Senior X. O
    login é convertido em e-mail (prefixo "tenant~" removido, domínio do tenant
    anexado) e o usuário é criado ou atualizado.

    Returns:
        - 200 (OK): Sessão no mesmo formato de /api/auth/login
        - 401 (Unauthorized): Token ausente, inválido ou expirado
        - 500 (Internal Server Error): Erro ao criar a sessão
    """
    token = _token_seniorx_da_requisicao()
    if not token:
        return jsonify(
            success=False,
            error="Token Senior X não fornecido. Use header 'x-senior-token' ou 'Authorization: SeniorX <token>'",
        ), 401
    usuario_seniorx = _validar_token_seniorx(token)
    if not usuario_seniorx:
        return jsonify(success=False, error='Token Senior X inválido ou expirado'), 401

    login_seniorx = usuario_seniorx['email'] or usuario_seniorx['username']
    if not login_seniorx:
        return jsonify(success=False, error='Token Senior X sem usuário'), 401
    email = normalizar_email(login_seniorx, usuario_seniorx['tenantDomain']).lower()
    nome = normalizar_nome_completo(usuario_seniorx['fullName']) or usuario_seniorx['username']

    try:
        usuario, criado = _obter_ou_criar_usuario_externo(
            email, nome, _texto(usuario_seniorx['id']), atualizar=True
        )
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"[SeniorX] Erro na troca de token para {email}: {e}")
        return jsonify(success=False, error=str(e) or 'Erro interno'), 500

    app.logger.info(f"[SeniorX] Token trocado por sessão para {email} (novo={criado})")
    return jsonify(_resposta_sessao(usuario)), 200


# ============================================================================
# FORNECEDORES
# ============================================================================

@app.route('/api/fornecedores', methods=['GET'])
@jwt_required()
def listar_fornecedores():
    """
    Lista fornecedores com busca, ordenação e paginação.

    Query string:
        - busca (str, opcional): Filtra por nome, código ou CNPJ
        - situacao (str, opcional): ativo ou inativo
        - ordenar, direcao, pagina, por_pagina: Ver _responder_lista

    Returns:
        - 200 (OK): {"itens": [...], "paginacao": {"total", "pagina", "por_pagina", "paginas"}}

    Exemplo de requisição:
        GET /api/fornecedores?busca=aco&ordenar=score_atual&direcao=desc&pagina=1&por_pagina=10
    """
    try:
        consulta = Fornecedor.query
        busca = _texto(request.args.get('busca'))
        if busca:
            padrao = f'%{busca}%'
            consulta = consulta.filter(or_(
                Fornecedor.nome.ilike(padrao),
                Fornecedor.codigo.ilike(padrao),
                Fornecedor.cnpj.ilike(padrao),
            ))
        situacao = request.args.get('situacao')
        if situacao in SITUACOES:
            consulta = consulta.filter(Fornecedor.situacao == situacao)
        fornecedores = consulta.order_by(Fornecedor.nome.asc()).all()
        return _responder_lista([_serializar_fornecedor(f) for f in fornecedores])
    except Exception as e:
        app.logger.error(f"Erro ao listar fornecedores: {e}")
        return jsonify(message='Erro ao listar fornecedores.'), 500


@app.route('/api/fornecedores', methods=['POST'])
@jwt_required()
def criar_fornecedor():
    """
    Cadastra um fornecedor.

    Request Body (JSON):
        - codigo, nome, cnpj (str, obrigatórios)
        - endereco (str, opcional)

    Returns:
        - 201 (Created): Fornecedor criado
        - 400 (Bad Request): Dados incompletos
        - 409 (Conflict): Código já cadastrado
    """
    try:
        data = _dados_requisicao()
        codigo, nome, cnpj = _texto(data.get('codigo')), _texto(data.get('nome')), _texto(data.get('cnpj'))
        if not codigo or not nome or not cnpj:
            return jsonify(message="Dados incompletos, verifique os campos."), 400
        fornecedor = Fornecedor(
            codigo=codigo,
            nome=nome,
            cnpj=cnpj,
            endereco=_texto(data.get('endereco')),
            situacao=data.get('situacao') if data.get('situacao') in SITUACOES else 'ativo',
        )
        db.session.add(fornecedor)
        db.session.commit()
        app.logger.info(f"Fornecedor {codigo} cadastrado")
        return jsonify(_serializar_fornecedor(fornecedor)), 201
    except IntegrityError:
        db.session.rollback()
        return jsonify(message='Código já cadastrado.'), 409
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao cadastrar fornecedor: {e}")
        return jsonify(message='Erro ao cadastrar fornecedor: ' + str(e)), 500


@app.route('/api/fornecedores/<int:fornecedor_id>', methods=['GET'])
@jwt_required()
def detalhar_fornecedor(fornecedor_id):
    fornecedor = db.session.get(Fornecedor, fornecedor_id)
    if not fornecedor:
        return jsonify(message='Fornecedor não encontrado.'), 404
    dados = _serializar_fornecedor(fornecedor)
    dados['contatos'] = [_serializar_contato(c) for c in fornecedor.contatos]
    return jsonify(dados), 200


@app.route('/api/fornecedores/<int:fornecedor_id>', methods=['PUT', 'PATCH'])
@jwt_required()
def atualizar_fornecedor(fornecedor_id):
    try:
        fornecedor = db.session.get(Fornecedor, fornecedor_id)
        if not fornecedor:
            return jsonify(message='Fornecedor não encontrado.'), 404
        data = _dados_requisicao()
        for campo in ('codigo', 'nome', 'cnpj'):
            if campo in data:
                valor = _texto(data.get(campo))
                if not valor:
                    return jsonify(message=f'O campo {campo} não pode ficar vazio.'), 400
                setattr(fornecedor, campo, valor)
        if 'endereco' in data:
            fornecedor.endereco = _texto(data.get('endereco'))
        if data.get('situacao') in SITUACOES:
            fornecedor.situacao = data['situacao']
        db.session.commit()
        return jsonify(_serializar_fornecedor(fornecedor)), 200
    except IntegrityError:
        db.session.rollback()
        return jsonify(message='Código já cadastrado.'), 409
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao atualizar fornecedor {fornecedor_id}: {e}")
        return jsonify(message='Erro ao atualizar fornecedor.'), 500


@app.route('/api/fornecedores/<int:fornecedor_id>', methods=['DELETE'])
@jwt_required()
def excluir_fornecedor(fornecedor_id):
    """
    Remove um fornecedor com contatos, qualificações, notas e anexos.

    Requer papel admin.

    Returns:
        - 200 (OK): {"message": "Fornecedor excluído com sucesso."}
        - 403 (Forbidden): Usuário sem papel admin
        - 404 (Not Found): Fornecedor inexistente
    """
    if not _admin_usuario_autorizado():
        return jsonify(message='Acesso nao autorizado.'), 403
    try:
        fornecedor = db.session.get(Fornecedor, fornecedor_id)
        if not fornecedor:
            return jsonify(message='Fornecedor não encontrado.'), 404
        documentos = [q.id for q in fornecedor.qualificacoes]
        db.session.delete(fornecedor)
        db.session.commit()
        for documento_id in documentos:
            _remover_pasta_anexos(documento_id)
        app.logger.info(f"Fornecedor {fornecedor_id} excluído")
        return jsonify(message='Fornecedor excluído com sucesso.'), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao excluir fornecedor {fornecedor_id}: {e}")
        return jsonify(message='Erro ao excluir fornecedor.'), 500


@app.route('/api/fornecedores/<int:fornecedor_id>/situacao', methods=['PATCH'])
@jwt_required()
def alternar_situacao_fornecedor(fornecedor_id):
    try:
        fornecedor = db.session.get(Fornecedor, fornecedor_id)
        if not fornecedor:
            return jsonify(message='Fornecedor não encontrado.'), 404
        _alternar_situacao(fornecedor)
        db.session.commit()
        return jsonify(_serializar_fornecedor(fornecedor)), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao alterar situação do fornecedor {fornecedor_id}: {e}")
        return jsonify(message='Erro ao alterar situação.'), 500


@app.route('/api/fornecedores/<int:fornecedor_id>/desempenho', methods=['GET'])
@jwt_required()
def desempenho(fornecedor_id):
    """
    Evolução das notas do fornecedor.

    Returns:
        - 200 (OK):
            {
                "fornecedor_id": 3,
                "score_atual": 82.5,
                "documentos": [{"id": 9, "codigo": 12, "data_recebimento": "2025-01-10", "status": "concluido", "avg_score": 80}],
                "criterios_scores": [{"codigo": "C01", "descricao": "Prazo", "avg_score": 60}]
            }
        - 404 (Not Found): Fornecedor inexistente
    """
    try:
        fornecedor = db.session.get(Fornecedor, fornecedor_id)
        if not fornecedor:
            return jsonify(message='Fornecedor não encontrado.'), 404
        return jsonify(desempenho_fornecedor(fornecedor)), 200
    except Exception as e:
        app.logger.error(f"Erro ao calcular desempenho do fornecedor {fornecedor_id}: {e}")
        return jsonify(message='Erro ao calcular desempenho.'), 500


@app.route('/api/fornecedores/<int:fornecedor_id>/feedback', methods=['POST'])
@jwt_required()
def enviar_feedback(fornecedor_id):
    """
    Envia aos contatos do fornecedor o relatório de qualificação com sugestões.

    Returns:
        - 200 (OK): {"success": true, "message": "...", "recipients": [...], "originalRecipients": [...]}
        - 400 (Bad Request): Fornecedor inexistente, sem contatos com e-mail,
          sem qualificações concluídas ou falha do gateway de IA
        - 500 (Internal Server Error): Falha no envio do e-mail
    """
    try:
        resultado = enviar_feedback_fornecedor(fornecedor_id)
        app.logger.info(f"Feedback do fornecedor {fornecedor_id}: {resultado['message']}")
        return jsonify(resultado), 200
    except FeedbackError as e:
        return jsonify(success=False, message=str(e)), 400
    except Exception as e:
        app.logger.error(f"Erro ao enviar feedback do fornecedor {fornecedor_id}: {e}")
        return jsonify(success=False, message='Erro ao enviar feedback.'), 500


# ============================================================================
# CONTATOS DO FORNECEDOR
# ============================================================================

@app.route('/api/fornecedores/<int:fornecedor_id>/contatos', methods=['GET'])
@jwt_required()
def listar_contatos(fornecedor_id):
    if not db.session.get(Fornecedor, fornecedor_id):
        return jsonify(message='Fornecedor não encontrado.'), 404
    contatos = (
        FornecedorContato.query.filter_by(fornecedor_id=fornecedor_id)
        .order_by(FornecedorContato.nome.asc())
        .all()
    )
    return _responder_lista([_serializar_contato(c) for c in contatos])


@app.route('/api/fornecedores/<int:fornecedor_id>/contatos', methods=['POST'])
@jwt_required()
def criar_contato(fornecedor_id):
    try:
        if not db.session.get(Fornecedor, fornecedor_id):
            return jsonify(message='Fornecedor não encontrado.'), 404
        data = _dados_requisicao()
        nome = _texto(data.get('nome'))
        if not nome:
            return jsonify(message='Nome do contato é obrigatório.'), 400
        contato = FornecedorContato(
            fornecedor_id=fornecedor_id,
            nome=nome,
            email=_texto(data.get('email')),
            whatsapp=_texto(data.get('whatsapp')),
        )
        db.session.add(contato)
        db.session.commit()
        return jsonify(_serializar_contato(contato)), 201
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao cadastrar contato: {e}")
        return jsonify(message='Erro ao cadastrar contato.'), 500


@app.route('/api/contatos/<int:contato_id>', methods=['PUT', 'PATCH'])
@jwt_required()
def atualizar_contato(contato_id):
    try:
        contato = db.session.get(FornecedorContato, contato_id)
        if not contato:
            return jsonify(message='Contato não encontrado.'), 404
        data = _dados_requisicao()
        if 'nome' in data:
            nome = _texto(data.get('nome'))
            if not nome:
                return jsonify(message='Nome do contato é obrigatório.'), 400
            contato.nome = nome
        for campo in ('email', 'whatsapp'):
            if campo in data:
                setattr(contato, campo, _texto(data.get(campo)))
        db.session.commit()
        return jsonify(_serializar_contato(contato)), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao atualizar contato {contato_id}: {e}")
        return jsonify(message='Erro ao atualizar contato.'), 500


@app.route('/api/contatos/<int:contato_id>', methods=['DELETE'])
@jwt_required()
def excluir_contato(contato_id):
    try:
        contato = db.session.get(FornecedorContato, contato_id)
        if not contato:
            return jsonify(message='Contato não encontrado.'), 404
        db.session.delete(contato)
        db.session.commit()
        return jsonify(message='Contato excluído com sucesso.'), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao excluir contato {contato_id}: {e}")
        return jsonify(message='Erro ao excluir contato.'), 500


# ============================================================================
# GRUPOS DE QUALIFICAÇÃO
# ============================================================================

@app.route('/api/grupos', methods=['GET'])
@jwt_required()
def listar_grupos():
    """
    Lista grupos de qualificação com a quantidade de critérios de cada um.

    Returns:
        - 200 (OK): {"itens": [{"id", "codigo", "descricao", "situacao", "criterios_count"}], "paginacao": {...}}
    """
    contagens = dict(
        db.session.query(Criterio.grupo_id, func.count(Criterio.id))
        .filter(Criterio.grupo_id.isnot(None))
        .group_by(Criterio.grupo_id)
        .all()
    )
    grupos = GrupoQualificacao.query.order_by(GrupoQualificacao.codigo.asc()).all()
    return _responder_lista([_serializar_grupo(g, contagens.get(g.id, 0)) for g in grupos])


@app.route('/api/grupos', methods=['POST'])
@jwt_required()
def criar_grupo():
    try:
        data = _dados_requisicao()
        codigo, descricao = _texto(data.get('codigo')), _texto(data.get('descricao'))
        if not codigo or not descricao:
            return jsonify(message="Dados incompletos, verifique os campos."), 400
        grupo = GrupoQualificacao(codigo=codigo, descricao=descricao, situacao='ativo')
        db.session.add(grupo)
        db.session.commit()
        return jsonify(_serializar_grupo(grupo, 0)), 201
    except IntegrityError:
        db.session.rollback()
        return jsonify(message='Código já cadastrado.'), 409
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao cadastrar grupo: {e}")
        return jsonify(message='Erro ao cadastrar grupo.'), 500


@app.route('/api/grupos/<int:grupo_id>', methods=['PUT', 'PATCH'])
@jwt_required()
def atualizar_grupo(grupo_id):
    try:
        grupo = db.session.get(GrupoQualificacao, grupo_id)
        if not grupo:
            return jsonify(message='Grupo não encontrado.'), 404
        data = _dados_requisicao()
        for campo in ('codigo', 'descricao'):
            if campo in data:
                valor = _texto(data.get(campo))
                if not valor:
                    return jsonify(message=f'O campo {campo} não pode ficar vazio.'), 400
                setattr(grupo, campo, valor)
        if data.get('situacao') in SITUACOES:
            grupo.situacao = data['situacao']
        db.session.commit()
        return jsonify(_serializar_grupo(grupo)), 200
    except IntegrityError:
        db.session.rollback()
        return jsonify(message='Código já cadastrado.'), 409
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao atualizar grupo {grupo_id}: {e}")
        return jsonify(message='Erro ao atualizar grupo.'), 500


@app.route('/api/grupos/<int:grupo_id>', methods=['DELETE'])
@jwt_required()
def excluir_grupo(grupo_id):
    """Remove o grupo; os critérios vinculados ficam sem grupo."""
    try:
        grupo = db.session.get(GrupoQualificacao, grupo_id)
        if not grupo:
            return jsonify(message='Grupo não encontrado.'), 404
        Criterio.query.filter_by(grupo_id=grupo.id).update({'grupo_id': None})
        db.session.delete(grupo)
        db.session.commit()
        return jsonify(message='Grupo excluído com sucesso.'), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao excluir grupo {grupo_id}: {e}")
        return jsonify(message='Erro ao excluir grupo.'), 500


@app.route('/api/grupos/<int:grupo_id>/situacao', methods=['PATCH'])
@jwt_required()
def alternar_situacao_grupo(grupo_id):
    try:
        grupo = db.session.get(GrupoQualificacao, grupo_id)
        if not grupo:
            return jsonify(message='Grupo não encontrado.'), 404
        _alternar_situacao(grupo)
        db.session.commit()
        return jsonify(_serializar_grupo(grupo)), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao alterar situação do grupo {grupo_id}: {e}")
        return jsonify(message='Erro ao alterar situação.'), 500


# ============================================================================
# CRITÉRIOS
# ============================================================================

def _grupo_valido(grupo_id):
    if grupo_id in (None, ''):
        return True, None
    try:
        grupo_id = int(grupo_id)
    except (TypeError, ValueError):
        return False, None
    return db.session.get(GrupoQualificacao, grupo_id) is not None, grupo_id


@app.route('/api/criterios', methods=['GET'])
@jwt_required()
def listar_criterios():
    """
    Lista critérios com a descrição do grupo.

    Query string:
        - grupo_id (int, opcional), situacao (str, opcional)
        - ordenar, direcao, pagina, por_pagina
    """
    consulta = Criterio.query
    grupo_id = request.args.get('grupo_id', type=int)
    if grupo_id:
        consulta = consulta.filter(Criterio.grupo_id == grupo_id)
    situacao = request.args.get('situacao')
    if situacao in SITUACOES:
        consulta = consulta.filter(Criterio.situacao == situacao)
    criterios = consulta.order_by(Criterio.codigo.asc()).all()
    return _responder_lista([_serializar_criterio(c) for c in criterios])


@app.route('/api/criterios', methods=['POST'])
@jwt_required()
def criar_criterio():
    try:
        data = _dados_requisicao()
        codigo, descricao = _texto(data.get('codigo')), _texto(data.get('descricao'))
        if not codigo or not descricao:
            return jsonify(message="Dados incompletos, verifique os campos."), 400
        valido, grupo_id = _grupo_valido(data.get('grupo_id'))
        if not valido:
            return jsonify(message='Grupo não encontrado.'), 400
        criterio = Criterio(codigo=codigo, descricao=descricao, grupo_id=grupo_id, situacao='ativo')
        db.session.add(criterio)
        db.session.commit()
        return jsonify(_serializar_criterio(criterio)), 201
    except IntegrityError:
        db.session.rollback()
        return jsonify(message='Código já cadastrado.'), 409
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao cadastrar critério: {e}")
        return jsonify(message='Erro ao cadastrar critério.'), 500


@app.route('/api/criterios/<int:criterio_id>', methods=['PUT', 'PATCH'])
@jwt_required()
def atualizar_criterio(criterio_id):
    try:
        criterio = db.session.get(Criterio, criterio_id)
        if not criterio:
            return jsonify(message='Critério não encontrado.'), 404
        data = _dados_requisicao()
        for campo in ('codigo', 'descricao'):
            if campo in data:
                valor = _texto(data.get(campo))
                if not valor:
                    return jsonify(message=f'O campo {campo} não pode ficar vazio.'), 400
                setattr(criterio, campo, valor)
        if 'grupo_id' in data:
            valido, grupo_id = _grupo_valido(data.get('grupo_id'))
            if not valido:
                return jsonify(message='Grupo não encontrado.'), 400
            criterio.grupo_id = grupo_id
        if data.get('situacao') in SITUACOES:
            criterio.situacao = data['situacao']
        db.session.commit()
        return jsonify(_serializar_criterio(criterio)), 200
    except IntegrityError:
        db.session.rollback()
        return jsonify(message='Código já cadastrado.'), 409
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao atualizar critério {criterio_id}: {e}")
        return jsonify(message='Erro ao atualizar critério.'), 500


@app.route('/api/criterios/<int:criterio_id>', methods=['DELETE'])
@jwt_required()
def excluir_criterio(criterio_id):
    """Remove o critério; critérios já avaliados em qualificações não podem ser excluídos."""
    try:
        criterio = db.session.get(Criterio, criterio_id)
        if not criterio:
            return jsonify(message='Critério não encontrado.'), 404
        if QualificacaoCriterio.query.filter_by(criterio_id=criterio.id).first():
            return jsonify(message='Critério já utilizado em qualificações, inative-o.'), 409
        db.session.delete(criterio)
        db.session.commit()
        return jsonify(message='Critério excluído com sucesso.'), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao excluir critério {criterio_id}: {e}")
        return jsonify(message='Erro ao excluir critério.'), 500


@app.route('/api/criterios/<int:criterio_id>/situacao', methods=['PATCH'])
@jwt_required()
def alternar_situacao_criterio(criterio_id):
    try:
        criterio = db.session.get(Criterio, criterio_id)
        if not criterio:
            return jsonify(message='Critério não encontrado.'), 404
        _alternar_situacao(criterio)
        db.session.commit()
        return jsonify(_serializar_criterio(criterio)), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao alterar situação do critério {criterio_id}: {e}")
        return jsonify(message='Erro ao alterar situação.'), 500


# ============================================================================
# QUALIFICAÇÕES
# ============================================================================

def _proximo_codigo_qualificacao():
    atual = db.session.query(func.max(Qualificacao.codigo)).scalar()
    return (atual or 0) + 1


def _remover_pasta_anexos(documento_id):
    pasta = os.path.join(app.config['UPLOAD_FOLDER'], str(documento_id))
    if os.path.isdir(pasta):
        try:
            shutil.rmtree(pasta)
        except OSError as exc:
            app.logger.error(f"Falha ao remover anexos de {pasta}: {exc}")


@app.route('/api/qualificacoes', methods=['GET'])
@jwt_required()
def listar_qualificacoes():
    """
    Lista qualificações com nome e código do fornecedor, do código mais recente
    para o mais antigo.

    Query string:
        - fornecedor_id (int, opcional), status (str, opcional)
        - ordenar, direcao, pagina, por_pagina
    """
    try:
        consulta = Qualificacao.query
        fornecedor_id = request.args.get('fornecedor_id', type=int)
        if fornecedor_id:
            consulta = consulta.filter(Qualificacao.fornecedor_id == fornecedor_id)
        status = request.args.get('status')
        if status in STATUS_QUALIFICACAO:
            consulta = consulta.filter(Qualificacao.status == status)
        qualificacoes = consulta.order_by(Qualificacao.codigo.desc()).all()
        return _responder_lista([_serializar_qualificacao(q) for q in qualificacoes])
    except Exception as e:
        app.logger.error(f"Erro ao listar qualificações: {e}")
        return jsonify(message='Erro ao listar qualificações.'), 500


@app.route('/api/qualificacoes', methods=['POST'])
@jwt_required()
def criar_qualificacao():
    """
    Abre uma qualificação pendente para um fornecedor.

    Request Body (JSON):
        - fornecedor_id (int, obrigatório)
        - data_recebimento (str AAAA-MM-DD, opcional, padrão hoje)
        - serie_nf, numero_nf, observacao (str, opcionais)

    Returns:
        - 201 (Created): Qualificação criada com o próximo código sequencial
        - 400 (Bad Request): Fornecedor inexistente ou data inválida
    """
    try:
        data = _dados_requisicao()
        fornecedor_id = data.get('fornecedor_id')
        fornecedor = db.session.get(Fornecedor, int(fornecedor_id)) if str(fornecedor_id or '').isdigit() else None
        if not fornecedor:
            return jsonify(message='Fornecedor não encontrado.'), 400
        try:
            data_recebimento = _parse_data(data.get('data_recebimento'))
        except ValueError:
            return jsonify(message='Data de recebimento inválida.'), 400
        usuario = _usuario_autenticado()
        qualificacao = Qualificacao(
            codigo=_proximo_codigo_qualificacao(),
            fornecedor_id=fornecedor.id,
            data_recebimento=data_recebimento,
            serie_nf=_texto(data.get('serie_nf')),
            numero_nf=_texto(data.get('numero_nf')),
            observacao=_texto(data.get('observacao')),
            status='pendente',
            criado_por=usuario.id if usuario else None,
        )
        db.session.add(qualificacao)
        db.session.commit()
        app.logger.info(f"Qualificação {qualificacao.codigo} aberta para {fornecedor.nome}")
        return jsonify(_serializar_qualificacao(qualificacao, detalhado=True)), 201
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao criar qualificação: {e}")
        return jsonify(message='Erro ao criar qualificação.'), 500


@app.route('/api/qualificacoes/<int:documento_id>', methods=['GET'])
@jwt_required()
def detalhar_qualificacao(documento_id):
    qualificacao = db.session.get(Qualificacao, documento_id)
    if not qualificacao:
        return jsonify(message='Qualificação não encontrada.'), 404
    return jsonify(_serializar_qualificacao(qualificacao, detalhado=True)), 200


@app.route('/api/qualificacoes/<int:documento_id>', methods=['PUT', 'PATCH'])
@jwt_required()
def atualizar_qualificacao(documento_id):
    """
    Atualiza dados e status de uma qualificação.

    Mudanças de status ou de fornecedor recalculam o score dos fornecedores
    envolvidos.

    Returns:
        - 200 (OK): Qualificação atualizada
        - 400 (Bad Request): Status, data ou fornecedor inválido
        - 404 (Not Found): Qualificação inexistente
    """
    try:
        qualificacao = db.session.get(Qualificacao, documento_id)
        if not qualificacao:
            return jsonify(message='Qualificação não encontrada.'), 404
        data = _dados_requisicao()
        afetados = {qualificacao.fornecedor_id}

        if 'status' in data:
            if data['status'] not in STATUS_QUALIFICACAO:
                return jsonify(message='Status inválido.'), 400
            qualificacao.status = data['status']
        if 'fornecedor_id' in data:
            fornecedor = db.session.get(Fornecedor, data['fornecedor_id']) if data['fornecedor_id'] else None
            if not fornecedor:
                return jsonify(message='Fornecedor não encontrado.'), 400
            qualificacao.fornecedor_id = fornecedor.id
            afetados.add(fornecedor.id)
        if 'data_recebimento' in data:
            try:
                qualificacao.data_recebimento = _parse_data(data['data_recebimento'])
            except ValueError:
                return jsonify(message='Data de recebimento inválida.'), 400
        for campo in ('serie_nf', 'numero_nf', 'observacao'):
            if campo in data:
                setattr(qualificacao, campo, _texto(data.get(campo)))

        db.session.flush()
        for fornecedor_id in afetados:
            _recalcular_score_fornecedor(fornecedor_id)
        db.session.commit()
        return jsonify(_serializar_qualificacao(qualificacao, detalhado=True)), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao atualizar qualificação {documento_id}: {e}")
        return jsonify(message='Erro ao atualizar qualificação.'), 500


@app.route('/api/qualificacoes/<int:documento_id>', methods=['DELETE'])
@jwt_required()
def excluir_qualificacao(documento_id):
    """Remove a qualificação, suas notas e seus anexos (registros e arquivos)."""
    try:
        qualificacao = db.session.get(Qualificacao, documento_id)
        if not qualificacao:
            return jsonify(message='Qualificação não encontrada.'), 404
        fornecedor_id = qualificacao.fornecedor_id
        # notas e anexos saem junto pelo cascade
        db.session.delete(qualificacao)
        db.session.flush()
        _recalcular_score_fornecedor(fornecedor_id)
        db.session.commit()
        _remover_pasta_anexos(documento_id)
        return jsonify(message='Qualificação excluída com sucesso.'), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao excluir qualificação {documento_id}: {e}")
        return jsonify(message='Erro ao excluir qualificação.'), 500


@app.route('/api/qualificacoes/<int:documento_id>/criterios', methods=['PUT'])
@jwt_required()
def salvar_notas_qualificacao(documento_id):
    """
    Grava as notas dos critérios de uma qualificação.

    Cada critério tem no máximo uma nota por qualificação; notas existentes são
    substituídas. Todas as notas são validadas antes de qualquer gravação.

    Request Body (JSON):
        - criterios (list, obrigatório): [{"criterio_id": 1, "score": 4, "observacao": "..."}]

    Returns:
        - 200 (OK): Qualificação com as notas atualizadas
        - 400 (Bad Request): Nota fora de 1 a 5 ou critério inexistente
        - 404 (Not Found): Qualificação inexistente

    Exemplo de requisição:
        PUT /api/qualificacoes/9/criterios
        {
            "criterios": [
                {"criterio_id": 1, "score": 5},
                {"criterio_id": 2, "score": 3, "observacao": "Atraso na entrega"}
            ]
        }
    """
    try:
        qualificacao = db.session.get(Qualificacao, documento_id)
        if not qualificacao:
            return jsonify(message='Qualificação não encontrada.'), 404
        data = request.get_json(silent=True)
        itens = data.get('criterios') if isinstance(data, dict) else data
        if not isinstance(itens, list) or not itens:
            return jsonify(message='Informe as notas dos critérios.'), 400

        validados = []
        for item in itens:
            if not isinstance(item, dict):
                return jsonify(message='Formato de nota inválido.'), 400
            criterio = db.session.get(Criterio, item.get('criterio_id')) if item.get('criterio_id') else None
            if not criterio:
                return jsonify(message=f"Critério {item.get('criterio_id')} não encontrado."), 400
            score = item.get('score')
            if isinstance(score, bool) or not isinstance(score, int) or not SCORE_MINIMO <= score <= SCORE_MAXIMO:
                return jsonify(message=f'A nota deve ser um inteiro entre {SCORE_MINIMO} e {SCORE_MAXIMO}.'), 400
            validados.append((criterio.id, score, _texto(item.get('observacao'))))

        existentes = {a.criterio_id: a for a in qualificacao.avaliacoes}
        for criterio_id, score, observacao in validados:
            avaliacao = existentes.get(criterio_id)
            if avaliacao is None:
                avaliacao = QualificacaoCriterio(criterio_id=criterio_id)
                qualificacao.avaliacoes.append(avaliacao)
                existentes[criterio_id] = avaliacao
            avaliacao.score = score
            avaliacao.observacao = observacao

        db.session.flush()
        _recalcular_score_fornecedor(qualificacao.fornecedor_id)
        db.session.commit()
        return jsonify(_serializar_qualificacao(qualificacao, detalhado=True)), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao salvar notas da qualificação {documento_id}: {e}")
        return jsonify(message='Erro ao salvar notas.'), 500


# ============================================================================
# ANEXOS
# ============================================================================

@app.route('/api/qualificacoes/<int:documento_id>/anexos', methods=['POST'])
@jwt_required()
def enviar_anexos(documento_id):
    """
    Recebe anexos (multipart) de uma qualificação.

    Os arquivos são gravados em UPLOAD_FOLDER/<documento_id>/ com nome baseado
    no horário do envio, e ficam acessíveis pela URL pública retornada.

    Form Data:
        - arquivo (file, obrigatório, pode repetir): PDF, PNG, JPG, JPEG, DOCX ou XLSX
        - criterio_id (int, opcional): Critério ao qual o anexo se refere

    Returns:
        - 201 (Created): {"anexos": [{"id", "file_name", "file_path", "url", ...}]}
        - 400 (Bad Request): Nenhum arquivo ou extensão não permitida
        - 404 (Not Found): Qualificação inexistente
    """
    caminhos_gravados = []
    try:
        qualificacao = db.session.get(Qualificacao, documento_id)
        if not qualificacao:
            return jsonify(message='Qualificação não encontrada.'), 404
        arquivos = [a for a in request.files.getlist('arquivo') if a and a.filename]
        if not arquivos:
            return jsonify(message='Nenhum arquivo enviado.'), 400
        for arquivo in arquivos:
            if not _arquivo_permitido(arquivo.filename):
                return jsonify(message=f'Extensão não permitida: {arquivo.filename}'), 400

        criterio_id = request.form.get('criterio_id', type=int)
        if criterio_id and not db.session.get(Criterio, criterio_id):
            return jsonify(message='Critério não encontrado.'), 400

        pasta = os.path.join(app.config['UPLOAD_FOLDER'], str(documento_id))
        os.makedirs(pasta, exist_ok=True)
        marca = int(datetime.utcnow().timestamp() * 1000)
        anexos = []
        for indice, arquivo in enumerate(arquivos):
            extensao = arquivo.filename.rsplit('.', 1)[1].lower()
            nome_gravado = f'{marca}-{indice}.{extensao}'
            destino = os.path.join(pasta, nome_gravado)
            arquivo.save(destino)
            caminhos_gravados.append(destino)
            anexo = QualificacaoAnexo(
                documento_id=documento_id,
                criterio_id=criterio_id,
                file_name=secure_filename(arquivo.filename) or nome_gravado,
                file_path=f'{documento_id}/{nome_gravado}',
                file_type=arquivo.mimetype or mimetypes.guess_type(arquivo.filename)[0] or 'application/octet-stream',
                file_size=os.path.getsize(destino),
            )
            db.session.add(anexo)
            anexos.append(anexo)
        db.session.commit()
        app.logger.info(f"{len(anexos)} anexo(s) gravado(s) na qualificação {documento_id}")
        return jsonify(anexos=[_serializar_anexo(a) for a in anexos]), 201
    except Exception as e:
        db.session.rollback()
        for caminho in caminhos_gravados:
            if os.path.exists(caminho):
                os.remove(caminho)
        app.logger.error(f"Erro ao enviar anexos da qualificação {documento_id}: {e}")
        return jsonify(message='Erro ao enviar anexos.'), 500


@app.route('/api/qualificacoes/<int:documento_id>/anexos', methods=['GET'])
@jwt_required()
def listar_anexos(documento_id):
    if not db.session.get(Qualificacao, documento_id):
        return jsonify(message='Qualificação não encontrada.'), 404
    anexos = (
        QualificacaoAnexo.query.filter_by(documento_id=documento_id)
        .order_by(QualificacaoAnexo.criado_em.asc())
        .all()
    )
    return jsonify(anexos=[_serializar_anexo(a) for a in anexos]), 200


@app.route('/api/anexos/<int:anexo_id>/download', methods=['GET'])
@jwt_required()
def baixar_anexo(anexo_id):
    anexo = db.session.get(QualificacaoAnexo, anexo_id)
    if not anexo:
        return jsonify(message='Anexo não encontrado.'), 404
    try:
        return send_from_directory(
            app.config['UPLOAD_FOLDER'],
            anexo.file_path,
            as_attachment=True,
            download_name=anexo.file_name,
            mimetype=anexo.file_type,
        )
    except NotFound:
        app.logger.error(f"Arquivo do anexo {anexo_id} ausente em disco: {anexo.file_path}")
        return jsonify(message='Arquivo não encontrado.'), 404


@app.route('/api/anexos/<int:anexo_id>', methods=['DELETE'])
@jwt_required()
def excluir_anexo(anexo_id):
    try:
        anexo = db.session.get(QualificacaoAnexo, anexo_id)
        if not anexo:
            return jsonify(message='Anexo não encontrado.'), 404
        caminho = os.path.join(app.config['UPLOAD_FOLDER'], anexo.file_path)
        db.session.delete(anexo)
        db.session.commit()
        if os.path.isfile(caminho):
            os.remove(caminho)
        return jsonify(message='Anexo excluído com sucesso.'), 200
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Erro ao excluir anexo {anexo_id}: {e}")
        return jsonify(message='Erro ao excluir anexo.'), 500


@app.route('/api/storage/qualificacoes/<path:caminho>', methods=['GET'])
def arquivo_publico(caminho):
    """URL pública dos anexos, como o bucket público de qualificações."""
    return send_from_directory(app.config['UPLOAD_FOLDER'], caminho)


# ============================================================================
# DASHBOARD
# ============================================================================

@app.route('/api/dashboard', methods=['GET'])
@jwt_required()
def dashboard():
    """
    Endpoint que retorna os indicadores do dashboard.

    Returns:
        - 200 (OK):
            {
                "stats": {"totalFornecedores": 12, "qualificacoesMes": 4, "scoreMedio": 81, "fornecedoresRisco": 2},
                "monthlyScores": [{"month": "jan/25", "avg_score": 84}, ...],
                "topSuppliers": [{"id": 1, "nome": "...", "score_atual": 96.0}],
                "bottomSuppliers": [{"id": 7, "nome": "...", "score_atual": 55.0}],
                "lowScoreCriteria": [{"id": 3, "descricao": "Prazo", "avg_score": 60}]
            }
        - 500 (Internal Server Error): Erro ao montar o dashboard
    """
    try:
        return jsonify(montar_dashboard()), 200
    except Exception as e:
        app.logger.error(f"Erro no dashboard: {e}")
        return jsonify(message='Erro ao gerar dashboard.'), 500


# ============================================================================
# TRATAMENTO DE ERROS
# ============================================================================

@app.errorhandler(404)
def nao_encontrado(erro):
    return jsonify(message='Recurso não encontrado.'), 404


@app.errorhandler(405)
def metodo_nao_permitido(erro):
    return jsonify(message='Método não permitido.'), 405


@app.errorhandler(413)
def arquivo_grande_demais(erro):
    return jsonify(message='Arquivo excede o tamanho máximo permitido.'), 413


# ============================================================================
# PONTO DE ENTRADA DA APLICAÇÃO
# ============================================================================

if __name__ == '__main__':
    # Em produção use um servidor WSGI (gunicorn)
    app.run(debug=True)
