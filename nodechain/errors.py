""" Errors raised outside the workflow engine taxonomy. """


class ConfigurationError(Exception):
    """ A required setting (URL, API key, binary) is missing or invalid. """


class LLMError(Exception):
    """ The language model provider failed or returned an unusable answer. """

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.retryable = retryable
