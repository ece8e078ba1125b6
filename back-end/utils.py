from flask_mail import Mail, Message
from flask import current_app
import math
import random
import re
import secrets
import unicodedata

mail = Mail()

FATOR_ESCALA_SCORE = 20
SCORE_MINIMO = 1
SCORE_MAXIMO = 5


def enviar_email(destinatarios, assunto, corpo_html):
    if isinstance(destinatarios, str):
        destinatarios = [destinatarios]
    msg = Message(
        assunto,
        recipients=list(destinatarios),
        html=corpo_html,
        sender=current_app.config.get('MAIL_DEFAULT_SENDER'),
    )
    mail.send(msg)


def gerar_token_recuperacao():
    return str(random.randint(100000, 999999))


def gerar_token_hash():
    return secrets.token_hex(28)


def gerar_senha_aleatoria():
    return secrets.token_urlsafe(32)


def escalar_score(valor):
    """Converte uma nota de 1 a 5 estrelas para a escala 0-100."""
    if valor is None:
        return None
    return valor * FATOR_ESCALA_SCORE


def media(valores):
    valores = [v for v in valores if v is not None]
    if not valores:
        return None
    return sum(valores) / len(valores)


def arredondar(valor):
    # Math.round do front: metade sempre para cima
    if valor is None:
        return 0
    return int(math.floor(valor + 0.5))


def _chave_natural(valor):
    texto = unicodedata.normalize('NFKD', str(valor)).casefold()
    texto = ''.join(c for c in texto if not unicodedata.combining(c))
    partes = re.split(r'(\d+)', texto)
    return [(0, int(p), '') if p.isdigit() else (1, 0, p) for p in partes if p != '']


def ordenar_registros(registros, chave, direcao='asc'):
    """
    Ordena uma lista de dicionarios pela chave informada.

    Valores nulos ficam sempre no final, independente da direcao. Textos sao
    comparados de forma natural ("F2" antes de "F10"), numeros numericamente.

    Args:
        registros: Lista de dicionarios
        chave: Campo usado na ordenacao (None mantem a ordem original)
        direcao: 'asc' ou 'desc'

    Returns:
        Nova lista ordenada
    """
    if not chave:
        return list(registros)
    preenchidos = [r for r in registros if r.get(chave) is not None]
    nulos = [r for r in registros if r.get(chave) is None]

    def _chave(registro):
        valor = registro.get(chave)
        if isinstance(valor, bool):
            return (0, [(0, int(valor), '')])
        if isinstance(valor, (int, float)):
            return (0, [(0, valor, '')])
        return (1, _chave_natural(valor))

    preenchidos.sort(key=_chave, reverse=(direcao == 'desc'))
    return preenchidos + nulos


def paginar(registros, pagina=None, por_pagina=None):
    total = len(registros)
    if not pagina or not por_pagina:
        return registros, {'total': total, 'pagina': 1, 'por_pagina': total, 'paginas': 1}
    pagina = max(int(pagina), 1)
    por_pagina = max(int(por_pagina), 1)
    paginas = max(math.ceil(total / por_pagina), 1)
    inicio = (pagina - 1) * por_pagina
    fatia = registros[inicio:inicio + por_pagina]
    return fatia, {'total': total, 'pagina': pagina, 'por_pagina': por_pagina, 'paginas': paginas}
