import unittest
from io import BytesIO
from unittest.mock import Mock, PropertyMock

from hamcrest import assert_that, calling, is_, raises

from jellyfpga.conduit.base import Conduit, ErrorReportingStream, StreamErrorReportingConduit
from jellyfpga.test.streams import BytesConduit


class ConduitTest(unittest.TestCase):

    def test_abstract_methods(self):
        sut = Conduit()
        assert_that(calling(sut.close), raises(NotImplementedError))
        assert_that(calling(sut.__getattribute__).with_args('input'), raises(NotImplementedError))
        assert_that(calling(sut.__getattribute__).with_args('output'), raises(NotImplementedError))
        assert_that(calling(sut.__getattribute__).with_args('open'), raises(NotImplementedError))
        assert_that(calling(sut.__getattribute__).with_args('target'), raises(NotImplementedError))


class ErrorReportingStreamTest(unittest.TestCase):

    def test_calls_pass_through(self):
        handler = Mock()
        stream = BytesIO(b'abc')
        sut = ErrorReportingStream(stream, handler)
        assert_that(sut.read(2), is_(b'ab'))
        assert_that(sut.closed, is_(False))
        assert_that(sut.read.__name__, is_('read'))
        handler.assert_not_called()

    def test_failed_call_is_reported_and_raised(self):
        handler = Mock()
        stream = BytesIO(b'abc')
        sut = ErrorReportingStream(stream, handler)
        stream.close()
        assert_that(calling(sut.read), raises(ValueError))
        handler.assert_called_once_with()

    def test_missing_attribute(self):
        handler = Mock()
        sut = ErrorReportingStream(BytesIO(), handler)
        assert_that(calling(getattr).with_args(sut, 'no_such_thing'), raises(AttributeError))
        handler.assert_not_called()


class StreamErrorReportingConduitTest(unittest.TestCase):

    def test_delegates_to_the_conduit(self):
        conduit = Mock()
        type(conduit).target = PropertyMock(return_value='socket')
        type(conduit).open = PropertyMock(return_value=True)
        sut = StreamErrorReportingConduit(conduit, Mock())
        assert_that(sut.target, is_('socket'))
        assert_that(sut.open, is_(True))
        sut.close()
        conduit.close.assert_called_once_with()

    def test_streams_are_wrapped_once(self):
        sut = StreamErrorReportingConduit(BytesConduit(b'abc'), Mock())
        assert_that(sut.input, is_(sut.input))
        assert_that(sut.output, is_(sut.output))

    def test_stream_errors_are_reported(self):
        inner = BytesConduit(b'abc')
        handler = Mock()
        sut = StreamErrorReportingConduit(inner, handler)
        assert_that(sut.input.read(1), is_(b'a'))
        sut.output.write(b'x')
        handler.assert_not_called()

        inner.output.close()
        assert_that(sut.open, is_(False))
        assert_that(calling(sut.output.write).with_args(b'y'), raises(ValueError))
        handler.assert_called_once_with()


class BytesConduitTest(unittest.TestCase):

    def test_streams(self):
        output = BytesIO()
        sut = BytesConduit(b'in', output)
        assert_that(sut.input.read(), is_(b'in'))
        assert_that(sut.output, is_(output))
        assert_that(sut.target, is_(sut.input))
        assert_that(sut.open, is_(True))
        sut.close()
        assert_that(sut.open, is_(False))
        assert_that(output.closed, is_(True))


if __name__ == '__main__':  # pragma no cover
    unittest.main()
