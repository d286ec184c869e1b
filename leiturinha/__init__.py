"""Leiturinha - personalized children's stories"""

__version__ = "1.0.0"
