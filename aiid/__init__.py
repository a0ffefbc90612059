from .aiid import (
    IID_HOST,
    IID_SUBSCRIBE_PATH,
    IID_UNSUBSCRIBE_PATH,
    ERROR_CODES,
    UNKNOWN_ERROR,
    IIDException,
    IIDInvalidInputException,
    IIDTransportException,
    IIDDecodeException,
    IIDBackendException,
    IIDMalformedRequestException,
    IIDAuthenticationException,
    IIDUnavailableException,
    AiohttpTransport,
    ErrorInfo,
    TopicManagementPayload,
    TopicManagementResponse,
    TopicManager,
    TopicResult,
    TransportResponse,
    map_error_code,
    normalize_topic,
    reconcile,
)
