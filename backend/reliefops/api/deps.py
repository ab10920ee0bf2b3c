from fastapi import Request

from reliefops.config import Settings
from reliefops.repositories.base import Store


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
