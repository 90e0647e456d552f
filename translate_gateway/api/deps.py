from fastapi import Request

from translate_gateway.gateway.gateway import TranslationGateway


def get_gateway(request: Request) -> TranslationGateway:
    """The process-wide gateway created in the app lifespan."""
    return request.app.state.gateway
