from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()


class Usuario(db.Model):
    __tablename__ = 'usuarios'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    nome = db.Column(db.String(200), nullable=True)
    senha = db.Column(db.String(256), nullable=False)
    papel = db.Column(db.String(20), default='user', nullable=False)

    auth_provider = db.Column(db.String(20), default='primary', nullable=False)
    senior_user_id = db.Column(db.String(200), nullable=True)

    token_recuperacao = db.Column(db.String(6), nullable=True)
    token_expira = db.Column(db.DateTime, nullable=True)

    criado_em = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    atualizado_em = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    links_unicos = db.relationship(
        'LinkUnicoAcesso',
        backref='usuario',
        lazy=True,
        cascade='all, delete-orphan'
    )

    def __init__(self, email, senha, nome=None, **kwargs):
        super().__init__(**kwargs)
        self.email = email
        self.senha = senha
        self.nome = nome


class LinkUnicoAcesso(db.Model):
    __tablename__ = 'links_unicos'

    id = db.Column(db.Integer, primary_key=True)
    usuario_id = db.Column(db.Integer, db.ForeignKey('usuarios.id'), nullable=False)
    token_digest = db.Column(db.String(64), unique=True, nullable=False)
    tipo = db.Column(db.String(20), default='magiclink', nullable=False)
    expira_em = db.Column(db.DateTime, nullable=False)
    usado_em = db.Column(db.DateTime, nullable=True)
    criado_em = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class TokenRevogado(db.Model):
    __tablename__ = 'tokens_revogados'

    id = db.Column(db.Integer, primary_key=True)
    jti = db.Column(db.String(64), unique=True, nullable=False, index=True)
    revogado_em = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class Fornecedor(db.Model):
    __tablename__ = 'fornecedores'

    id = db.Column(db.Integer, primary_key=True)
    codigo = db.Column(db.String(30), unique=True, nullable=False)
    nome = db.Column(db.String(200), nullable=False)
    cnpj = db.Column(db.String(18), nullable=False)
    endereco = db.Column(db.String(255), nullable=True)
    situacao = db.Column(db.String(10), default='ativo', nullable=False)

    score_atual = db.Column(db.Float, nullable=True)
    total_avaliacoes = db.Column(db.Integer, default=0, nullable=False)

    criado_em = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    atualizado_em = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    contatos = db.relationship(
        'FornecedorContato',
        backref='fornecedor',
        lazy=True,
        cascade='all, delete-orphan'
    )
    qualificacoes = db.relationship(
        'Qualificacao',
        backref='fornecedor',
        lazy=True,
        cascade='all, delete-orphan'
    )


class FornecedorContato(db.Model):
    __tablename__ = 'fornecedor_contatos'

    id = db.Column(db.Integer, primary_key=True)
    fornecedor_id = db.Column(db.Integer, db.ForeignKey('fornecedores.id'), nullable=False)
    nome = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    whatsapp = db.Column(db.String(30), nullable=True)
    criado_em = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class GrupoQualificacao(db.Model):
    __tablename__ = 'grupos_qualificacao'

    id = db.Column(db.Integer, primary_key=True)
    codigo = db.Column(db.String(30), unique=True, nullable=False)
    descricao = db.Column(db.String(255), nullable=False)
    situacao = db.Column(db.String(10), default='ativo', nullable=False)
    criado_em = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    atualizado_em = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    criterios = db.relationship('Criterio', backref='grupo', lazy=True)


class Criterio(db.Model):
    __tablename__ = 'criterios'

    id = db.Column(db.Integer, primary_key=True)
    codigo = db.Column(db.String(30), unique=True, nullable=False)
    descricao = db.Column(db.String(255), nullable=False)
    grupo_id = db.Column(db.Integer, db.ForeignKey('grupos_qualificacao.id'), nullable=True)
    situacao = db.Column(db.String(10), default='ativo', nullable=False)
    criado_em = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    atualizado_em = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Qualificacao(db.Model):
    __tablename__ = 'documentos'

    id = db.Column(db.Integer, primary_key=True)
    codigo = db.Column(db.Integer, unique=True, nullable=False)
    fornecedor_id = db.Column(db.Integer, db.ForeignKey('fornecedores.id'), nullable=False)
    data_recebimento = db.Column(db.Date, nullable=False)
    serie_nf = db.Column(db.String(20), nullable=True)
    numero_nf = db.Column(db.String(30), nullable=True)
    observacao = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), default='pendente', nullable=False)
    criado_por = db.Column(db.Integer, db.ForeignKey('usuarios.id'), nullable=True)
    criado_em = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    atualizado_em = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    avaliacoes = db.relationship(
        'QualificacaoCriterio',
        backref='qualificacao',
        lazy=True,
        cascade='all, delete-orphan'
    )
    anexos = db.relationship(
        'QualificacaoAnexo',
        backref='qualificacao',
        lazy=True,
        cascade='all, delete-orphan'
    )


class QualificacaoCriterio(db.Model):
    __tablename__ = 'documento_criterios'
    __table_args__ = (
        db.UniqueConstraint('documento_id', 'criterio_id', name='uq_documento_criterio'),
    )

    id = db.Column(db.Integer, primary_key=True)
    documento_id = db.Column(db.Integer, db.ForeignKey('documentos.id'), nullable=False)
    criterio_id = db.Column(db.Integer, db.ForeignKey('criterios.id'), nullable=False)
    score = db.Column(db.Integer, nullable=False)
    observacao = db.Column(db.Text, nullable=True)
    criado_em = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    criterio = db.relationship('Criterio')


class QualificacaoAnexo(db.Model):
    __tablename__ = 'documento_anexos'

    id = db.Column(db.Integer, primary_key=True)
    documento_id = db.Column(db.Integer, db.ForeignKey('documentos.id'), nullable=False)
    criterio_id = db.Column(db.Integer, db.ForeignKey('criterios.id'), nullable=True)
    file_name = db.Column(db.String(255), nullable=False)
    file_path = db.Column(db.String(500), nullable=False)
    file_type = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.Integer, nullable=True)
    criado_em = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
