from .storefront import ConfigurationResponse, GenerateRequest, GenerateResponse, MockupRequest

__all__ = [
    "ConfigurationResponse",
    "GenerateRequest",
    "GenerateResponse",
    "MockupRequest",
]
