from . import ask, news, translation

__all__ = ["ask", "news", "translation"]
