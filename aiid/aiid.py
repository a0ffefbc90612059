from collections import namedtuple
import logging
import json
import asyncio
import inspect

import aiohttp

IID_HOST = 'https://iid.googleapis.com'
IID_SUBSCRIBE_PATH = 'iid/v1:batchAdd'
IID_UNSUBSCRIBE_PATH = 'iid/v1:batchRemove'

TOPIC_PREFIX = '/topics/'

OPERATIONS = {
    'subscribe': IID_SUBSCRIBE_PATH,
    'unsubscribe': IID_UNSUBSCRIBE_PATH,
}

UNKNOWN_ERROR = 'unknown-error'

# Server error codes as defined in
# https://developers.google.com/instance-id/reference/server
ERROR_CODES = {
    'INVALID_ARGUMENT': 'invalid-argument',
    'NOT_FOUND': 'registration-token-not-registered',
    'INTERNAL': 'internal-error',
    'TOO_MANY_TOPICS': 'too-many-topics',
}


class IIDException(Exception):
    pass


class IIDInvalidInputException(IIDException):
    pass


class IIDTransportException(IIDException):
    def __init__(self, *args, cause=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.cause = cause


class IIDDecodeException(IIDException):
    pass


class IIDBackendException(IIDException):
    def __init__(self, *args, status=None, body=None, retry_after=None,
                 **kwargs):
        super().__init__(*args, **kwargs)
        self.status = status
        self.body = body
        self.retry_after = retry_after


# Exceptions from Google responses


class IIDMalformedRequestException(IIDBackendException):
    pass


class IIDAuthenticationException(IIDBackendException):
    pass


class IIDUnavailableException(IIDBackendException):
    pass


BACKEND_EXCEPTIONS = {
    400: IIDMalformedRequestException,
    401: IIDAuthenticationException,
    503: IIDUnavailableException,
}


def get_retry_after(response_headers):
    retry_after = response_headers.get('Retry-After')

    if retry_after:
        # Parse from seconds (e.g. Retry-After: 120)
        if type(retry_after) is int:
            return retry_after
        elif retry_after.isdigit():
            return int(retry_after)
        # Parse from HTTP-Date
        # (e.g. Retry-After: Fri, 31 Dec 1999 23:59:59 GMT)
        else:
            try:
                from email.utils import parsedate
                from calendar import timegm
                return timegm(parsedate(retry_after))
            except (TypeError, OverflowError, ValueError):
                return None

    return None


def normalize_topic(topic):
    if topic[:len(TOPIC_PREFIX)].upper() == TOPIC_PREFIX.upper():
        return topic
    return TOPIC_PREFIX + topic


def map_error_code(code):
    return ERROR_CODES.get(code, UNKNOWN_ERROR)


class TopicManagementPayload(object):
    """
    Request body of a batchAdd / batchRemove call
    """

    def __init__(self, topic, registration_tokens):
        self.to = normalize_topic(topic)
        self.registration_tokens = list(registration_tokens)

    @property
    def body(self):
        return json.dumps({
            'to': self.to,
            'registration_tokens': self.registration_tokens,
        })


class TopicResult(object):
    """
    Outcome of a single registration token, decoded from one entry of
    the ``results`` array. An empty entry is a success, anything else
    is a failure carrying the backend error code (possibly None).
    """

    __slots__ = ('error_code', 'succeeded')

    def __init__(self, succeeded, error_code=None):
        self.succeeded = succeeded
        self.error_code = error_code

    @classmethod
    def from_entry(cls, entry):
        if not isinstance(entry, dict):
            raise IIDDecodeException(
                "Unexpected result entry: {0!r}".format(entry))
        if not entry:
            return cls.SUCCESS
        error = entry.get('error')
        if error is not None and not isinstance(error, str):
            raise IIDDecodeException(
                "Unexpected error code: {0!r}".format(error))
        return cls(False, error)

    @property
    def reason(self):
        if self.succeeded:
            return None
        return map_error_code(self.error_code)

    def __eq__(self, other):
        if not isinstance(other, TopicResult):
            return NotImplemented
        return (self.succeeded, self.error_code) == \
            (other.succeeded, other.error_code)

    def __hash__(self):
        return hash((self.succeeded, self.error_code))

    def __repr__(self):
        if self.succeeded:
            return 'TopicResult.SUCCESS'
        return 'TopicResult(error_code={0!r})'.format(self.error_code)


TopicResult.SUCCESS = TopicResult(True)


ErrorInfo = namedtuple('ErrorInfo', ['index', 'reason'])


class TopicManagementResponse(object):
    """
    Outcome report of one subscribe / unsubscribe call.

    :param success_count: number of tokens the backend accepted
    :param errors: ErrorInfo records ordered by token index
    """

    __slots__ = ('_success_count', '_errors')

    def __init__(self, success_count, errors):
        self._success_count = success_count
        self._errors = tuple(errors)

    @property
    def success_count(self):
        return self._success_count

    @property
    def failure_count(self):
        return len(self._errors)

    @property
    def errors(self):
        return self._errors

    def __eq__(self, other):
        if not isinstance(other, TopicManagementResponse):
            return NotImplemented
        return (self._success_count, self._errors) == \
            (other._success_count, other._errors)

    def __repr__(self):
        return 'TopicManagementResponse(success_count={0}, errors={1!r})' \
            .format(self._success_count, list(self._errors))


def reconcile(results):
    """
    Build the outcome report from the decoded ``results`` array

    :param results: list of raw result entries, in request token order
    :return TopicManagementResponse
    :raises IIDDecodeException: if an entry is not a JSON object
    """
    success_count = 0
    errors = []

    for index, entry in enumerate(results):
        result = TopicResult.from_entry(entry)
        if result.succeeded:
            success_count += 1
        else:
            errors.append(ErrorInfo(index, result.reason))

    return TopicManagementResponse(success_count, errors)


def decode_results(text, registration_tokens):
    try:
        response = json.loads(text)
    except ValueError as e:
        raise IIDDecodeException(
            "The response could not be parsed as JSON: {0}".format(text)) \
            from e

    if not isinstance(response, dict) or \
            not isinstance(response.get('results'), list):
        raise IIDDecodeException(
            "Unexpected topic management response: {0}".format(text))

    results = response['results']
    if len(results) != len(registration_tokens):
        raise IIDDecodeException(
            "Expected {0} results, got {1}"
            .format(len(registration_tokens), len(results)))

    return results


def backend_error(status, headers, text):
    try:
        error = json.loads(text).get('error')
    except (ValueError, AttributeError):
        error = None

    if error:
        message = "Error while calling the IID service: {0}".format(error)
    else:
        message = "Unexpected HTTP response with status: {0}; body: {1}" \
            .format(status, text)

    exception_class = BACKEND_EXCEPTIONS.get(status, IIDBackendException)
    return exception_class(message, status=status, body=text,
                           retry_after=get_retry_after(headers))


TransportResponse = namedtuple('TransportResponse',
                               ['status', 'headers', 'text'])


class AiohttpTransport(object):

    def __init__(self, access_token, session=None, timeout=None, proxy=None):
        """ access_token: OAuth2 access token, or a callable returning one
                (or an awaitable of one)
            session: aiohttp.ClientSession to reuse. It is never closed
                by the transport.
            timeout: total timeout in seconds for every HTTP request
            proxy: proxy URL, e.g. "http://host:port"
        """
        self.access_token = access_token
        self.session = session
        self.timeout = timeout
        self.proxy = proxy

    async def get_access_token(self):
        token = self.access_token
        if callable(token):
            token = token()
        if inspect.isawaitable(token):
            token = await token
        return token

    async def post(self, url, data, headers):
        """
        POST ``data`` to ``url`` with the authorization header attached

        :param url: request url
        :type url: str
        :param data: serialized request body
        :type data: str
        :param headers: request headers
        :type headers: dict
        :return TransportResponse with the full response body read as text
        """
        headers = dict(headers)
        headers['Authorization'] = 'Bearer {0}'.format(
            await self.get_access_token())

        kwargs = {}
        if self.timeout is not None:
            kwargs['timeout'] = aiohttp.ClientTimeout(total=self.timeout)
        if self.proxy:
            kwargs['proxy'] = self.proxy

        session = self.session
        new_session = None
        if not session:
            session = new_session = aiohttp.ClientSession()

        try:
            async with session.post(url, data=data, headers=headers,
                                    **kwargs) as response:
                # Undecodable bytes must not hide the status code
                text = await response.text(errors='replace')
                return TransportResponse(response.status, response.headers,
                                         text)
        finally:
            if new_session:
                await new_session.close()


class TopicManager(object):
    logger = None
    logging_handler = None

    def __init__(self, access_token=None, transport=None, session=None,
                 timeout=None, proxy=None, debug=False):
        """ access_token: OAuth2 access token (or a callable returning one)
                used by the default aiohttp transport
            transport: object with an ``async post(url, data, headers)``
                method returning a TransportResponse. Overrides
                access_token, session, timeout and proxy.
            session: aiohttp.ClientSession to reuse across calls
            timeout: timeout in seconds for every HTTP request
            proxy: proxy URL, e.g. "http://host:port"
        """
        if transport is None:
            if access_token is None:
                raise IIDInvalidInputException(
                    "Either access_token or transport is required")
            transport = AiohttpTransport(access_token, session=session,
                                         timeout=timeout, proxy=proxy)

        self.transport = transport
        self.url = IID_HOST

        self.debug = debug
        if self.debug:
            TopicManager.enable_logging()

    @staticmethod
    def enable_logging(level=logging.DEBUG, handler=None):
        """
        Helper for quickly adding a StreamHandler to the logger.
        Useful for debugging.

        :param handler:
        :param level:
        :return: the handler after adding it
        """
        if not handler:
            # Use a singleton logging_handler instead of recreating it,
            # so we can remove-and-re-add safely without having duplicate
            # handlers
            if TopicManager.logging_handler is None:
                TopicManager.logging_handler = logging.StreamHandler()
                TopicManager.logging_handler.setFormatter(logging.Formatter(
                    '[%(asctime)s - %(levelname)s - %(filename)s:%(lineno)s'
                    ' - %(funcName)s()] %(message)s'))
            handler = TopicManager.logging_handler

        TopicManager.logger = logging.getLogger(__name__)
        TopicManager.logger.removeHandler(handler)
        TopicManager.logger.addHandler(handler)
        TopicManager.logger.setLevel(level)
        TopicManager.log('Added a stderr logging handler to logger: {0}',
                         __name__)

        # Enable aiohttp client logging
        aiohttp_logger_name = 'aiohttp.client'
        aiohttp_logger = logging.getLogger(aiohttp_logger_name)
        aiohttp_logger.removeHandler(handler)
        aiohttp_logger.addHandler(handler)
        aiohttp_logger.setLevel(level)
        TopicManager.log('Added a stderr logging handler to logger: {0}',
                         aiohttp_logger_name)

        return handler

    @staticmethod
    def log(message, *data):
        if TopicManager.logger and message:
            TopicManager.logger.debug(message.format(*data))

    async def make_request(self, url, data):
        """
        Makes a HTTP request to the IID service with the constructed payload

        :param url: request url
        :type url: str
        :param data: return value of TopicManagementPayload.body
        :type data: str
        :return response body text of a successful response
        :raises IIDTransportException: if the service could not be reached
        :raises IIDBackendException: if the service answered with a non-2xx
                status
        """
        headers = {
            'access_token_auth': 'true',
            'Content-Type': 'application/json',
        }

        self.log('Request URL: {0}', url)
        self.log('Request headers: {0}', headers)
        self.log('Request data: {0}', data)

        try:
            response = await self.transport.post(url, data, headers)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise IIDTransportException(
                "Error while calling the IID service: {0!r}".format(e),
                cause=e) from e

        self.log('Response status: {0}', response.status)
        self.log('Response data: {0}', response.text)

        if not 200 <= response.status < 300:
            raise backend_error(response.status, response.headers,
                                response.text)

        return response.text

    async def batch_operation(self, topic, registration_tokens, operation):
        """
        Subscribe or unsubscribe app instances to or from a topic

        :param topic: topic name, with or without the /topics/ prefix
        :type topic: str
        :param registration_tokens: Instance IDs
        :type registration_tokens: list
        :param operation: 'subscribe' or 'unsubscribe'
        :type operation: str
        :return: per-token outcome report
        :rtype: TopicManagementResponse
        """
        path = OPERATIONS.get(operation)
        if path is None:
            raise IIDInvalidInputException(
                "Invalid operation: {0}! Expected one of {1}"
                .format(operation, sorted(OPERATIONS)))

        payload = TopicManagementPayload(topic, registration_tokens)
        url = '{0}/{1}'.format(self.url, path)

        text = await self.make_request(url, payload.body)
        results = decode_results(text, payload.registration_tokens)
        return reconcile(results)

    async def subscribe(self, topic, registration_tokens):
        return await self.batch_operation(topic, registration_tokens,
                                          'subscribe')

    async def unsubscribe(self, topic, registration_tokens):
        return await self.batch_operation(topic, registration_tokens,
                                          'unsubscribe')
