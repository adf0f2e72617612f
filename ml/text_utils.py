import re

import numpy as np
from sklearn.feature_extraction.text import TfidfVectorizer


def clean_text(text: str) -> str:
    if not isinstance(text, str):
        return ""
    text = text.lower().strip()
    text = re.sub(r"http\S+|www\.\S+", " ", text)
    text = re.sub(r"[^a-z0-9\s]", " ", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def same_option(answer: str, expected: str) -> bool:
    # Selected option vs expected option text, ignoring case and spacing.
    return " ".join((answer or "").split()).casefold() == " ".join((expected or "").split()).casefold()


def _token_set(text: str) -> set:
    return set(text.split()) if text else set()


def answer_similarity(expected: str, answer: str) -> float:
    """Blend of TF-IDF cosine and keyword coverage, in [0, 1]."""
    e_text = clean_text(expected)
    a_text = clean_text(answer)
    if not e_text or not a_text:
        return 0.0

    try:
        vectors = TfidfVectorizer(ngram_range=(1, 2)).fit_transform([e_text, a_text])
    except ValueError:
        # Vocabulary can be empty when both texts are stop-word free single chars.
        return 0.0
    e_vec, a_vec = vectors[0].toarray().ravel(), vectors[1].toarray().ravel()
    denom = float(np.linalg.norm(e_vec) * np.linalg.norm(a_vec))
    cosine = float(np.dot(e_vec, a_vec) / denom) if denom else 0.0

    e_tokens = _token_set(e_text)
    keyword_overlap = len(e_tokens & _token_set(a_text)) / len(e_tokens) if e_tokens else 0.0

    return float(np.clip(0.6 * cosine + 0.4 * keyword_overlap, 0.0, 1.0))
