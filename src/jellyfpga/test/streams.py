from io import BytesIO

from jellyfpga.conduit.base import Conduit


class BytesConduit(Conduit):
    """ A conduit over in-memory streams: reads consume the given bytes and writes collect in the output. """

    def __init__(self, data=b'', output=None):
        self._input = BytesIO(data)
        self._output = output if output is not None else BytesIO()

    @property
    def target(self):
        return self._input

    @property
    def input(self):
        return self._input

    @property
    def output(self):
        return self._output

    @property
    def open(self):
        return not (self._input.closed or self._output.closed)

    def close(self):
        self._output.close()
        self._input.close()
