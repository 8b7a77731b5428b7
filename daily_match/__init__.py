"""
Daily Match Service

Сервис для Telegram WebApp: вход по initData, пара дня без повторов
в течение дня и управление аватаром. Построен по слоям DDD
(domain, application, infrastructure).
"""

__version__ = "1.0.0"
