class TransportError(Exception):
    """
    Brief: Base class for DNS transport failures (UDP, TCP).

    Inputs:
    - message: description

    Outputs:
    - Exception instance
    """

    pass
