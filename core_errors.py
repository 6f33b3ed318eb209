# -*- coding: utf-8 -*-
"""
core_errors.py
Общие исключения ядра.

Отказ в резервировании бюджета и отсутствие данных исключениями не являются:
они выражаются через ``False`` / ``None`` / пустое окно статистики.
"""


class BotError(Exception):
    """ Базовая ошибка системы. """


class ConfigError(BotError):
    """ Ошибка конфигурации/валидации. """


class DataError(BotError):
    """ Ошибка данных/источника (например, хранилище статистики недоступно). """
