"""
Text processing utilities and helpers.

Cleaning of commerce-platform text (HTML descriptions, stray whitespace),
sentence splitting for the chunker, and the keyword tokenizer used by
hybrid search scoring.
"""

import re
import hashlib
import unicodedata
from html import unescape
from typing import Iterable, List, Set

from store_rag.utils.logger import get_logger

logger = get_logger(__name__)


STOP_WORDS: Set[str] = {
    # Spanish
    "el", "la", "de", "que", "y", "a", "en", "un", "una", "es", "se", "no",
    "te", "lo", "le", "da", "su", "sus", "por", "son", "con", "para", "al",
    "del", "los", "las", "qué", "que", "cómo", "como", "cuál", "cual",
    "dónde", "donde", "cuándo", "cuando", "mis", "mi", "hay", "este", "esta",
    "tengo", "tienes", "tiene", "tenemos", "tienen",
    "puedo", "puedes", "puede", "podemos", "pueden",
    # English
    "the", "and", "for", "are", "with", "what", "which", "how", "does",
    "want", "need", "have", "can", "will", "would", "could", "my", "our",
}

COMMERCE_KEYWORDS: Set[str] = {
    "producto", "productos", "precio", "precios", "venta", "ventas",
    "catálogo", "inventario", "stock", "cliente", "clientes",
    "orden", "órdenes", "pedido", "pedidos", "analytics", "métricas",
}

_NON_WORD = re.compile(r"[^\w\sáéíóúñü]", re.UNICODE)
_HTML_TAG = re.compile(r"<[^>]+>")
_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+|\n+")


def clean_text(text: str) -> str:
    """
    Normalize unicode and collapse whitespace.

    Examples:
        >>> clean_text("  Remera   de algodón\\n talle M ")
        'Remera de algodón\\ntalle M'
    """
    if not text:
        return ""

    text = unicodedata.normalize("NFC", text)
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    text = re.sub(r"\n\s*", "\n", text)
    return text.strip()


def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run, newlines included, to one space."""
    return re.sub(r"\s+", " ", text).strip()


def remove_html_tags(text: str) -> str:
    """
    Strip HTML markup and decode entities.

    Product descriptions arrive as HTML from the storefront editor.

    Examples:
        >>> remove_html_tags("<p>Hola <b>mundo</b>&nbsp;!</p>")
        'Hola mundo !'
    """
    if not text:
        return ""
    clean = re.sub(r"<\s*(br|/p|/li|/div)\s*/?>", "\n", text, flags=re.IGNORECASE)
    clean = _HTML_TAG.sub(" ", clean)
    clean = unescape(clean).replace("\xa0", " ")
    return clean_text(clean)


def split_into_sentences(text: str) -> List[str]:
    """
    Split text on sentence punctuation and line breaks.

    Examples:
        >>> split_into_sentences("Envío gratis. ¿Talles? Sí!\\nStock: 3")
        ['Envío gratis.', '¿Talles?', 'Sí!', 'Stock: 3']
    """
    parts = _SENTENCE_BOUNDARY.split(text.strip())
    return [p.strip() for p in parts if p and p.strip()]


def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate text to ``max_length`` characters including the suffix.

    Examples:
        >>> truncate_text("This is a long text", 10)
        'This is...'
    """
    if len(text) <= max_length:
        return text

    return text[:max_length - len(suffix)].rstrip() + suffix


def count_tokens_approximate(text: str) -> int:
    """Rough token estimate (about 4 characters per token)."""
    return len(text) // 4


def generate_text_hash(text: str, algorithm: str = "md5") -> str:
    """
    Hex digest of ``text``.

    Examples:
        >>> len(generate_text_hash("Hola"))
        32
    """
    if algorithm == "md5":
        return hashlib.md5(text.encode("utf-8")).hexdigest()
    elif algorithm == "sha256":
        return hashlib.sha256(text.encode("utf-8")).hexdigest()
    elif algorithm == "sha1":
        return hashlib.sha1(text.encode("utf-8")).hexdigest()
    else:
        raise ValueError(f"Unknown hash algorithm: {algorithm}")


def _fold_plural(word: str) -> str:
    # productos -> producto, precios -> precio; short words are left alone
    if len(word) > 4 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def tokenize_terms(text: str) -> List[str]:
    """
    Lower-cased terms of ``text`` with punctuation and stop words removed.

    Accented characters are kept; words of two characters or fewer are dropped
    and simple plurals are folded so "productos" matches "producto".
    """
    if not text:
        return []

    words = _NON_WORD.sub(" ", text.lower()).split()
    return [
        _fold_plural(word)
        for word in words
        if len(word) > 2 and word not in STOP_WORDS
    ]


def extract_keywords(query: str, max_keywords: int = 8) -> List[str]:
    """
    Keywords of a search query, commerce vocabulary first.

    Examples:
        >>> extract_keywords("¿Qué productos tienen descuento?")
        ['producto', 'descuento']
    """
    words = _NON_WORD.sub(" ", (query or "").lower()).split()
    words = [w for w in words if len(w) > 2 and w not in STOP_WORDS]

    prioritized = [w for w in words if w in COMMERCE_KEYWORDS]
    regular = [w for w in words if w not in COMMERCE_KEYWORDS]

    keywords: List[str] = []
    for word in prioritized + regular:
        folded = _fold_plural(word)
        if folded not in keywords:
            keywords.append(folded)

    return keywords[:max_keywords]


def keyword_overlap(keywords: Iterable[str], text: str) -> float:
    """Fraction of ``keywords`` present among the terms of ``text``."""
    keywords = list(keywords)
    if not keywords:
        return 0.0
    terms = set(tokenize_terms(text))
    matched = sum(1 for keyword in keywords if keyword in terms)
    return matched / len(keywords)
