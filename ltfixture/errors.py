class FixtureError(Exception):
    pass

class PortExhaustedError(FixtureError):
    pass

class ServiceSpawnError(FixtureError):
    pass

class DuplicateIdentityError(FixtureError):
    pass

class FileTooLargeError(FixtureError):
    pass

class EngineError(AssertionError):
    """An error reported by the engine itself, e.g. an invalid_request alert.

    Subclasses AssertionError so pytest reports it as a test failure rather
    than an error in the fixture code.
    """
    pass
