"""Amazon SP-API infrastructure adapter."""

from .client import SpApiFeeGateway, SpApiGatewayFactory, translate_sp_api_error

__all__ = ["SpApiFeeGateway", "SpApiGatewayFactory", "translate_sp_api_error"]
