import threading
import time
import unittest
from unittest.mock import Mock, call, patch

import timeout_decorator
from hamcrest import assert_that, calling, empty, equal_to, has_key, has_property, instance_of, is_, is_not, raises

from jellyfpga.protocol.io_test import assert_delegates, debug_timeout
from jellyfpga.protocol.rpc import AsyncLoop, BaseAsyncProtocolHandler, FutureResponse, FutureValue, Request, \
    Response, ResponseSupport, RpcError, StatusCode


class RequestTest(unittest.TestCase):
    def test_to_stream_is_abstract(self):
        assert_that(calling(Request().to_stream).with_args('abcd'), raises(NotImplementedError))

    def test_response_keys_is_abstract(self):
        assert_that(calling(lambda: Request().response_keys), raises(NotImplementedError))


class ResponseTest(unittest.TestCase):
    def test_abstract(self):
        assert_that(calling(lambda: Response().response_key), raises(NotImplementedError))
        assert_that(calling(lambda: Response().value), raises(NotImplementedError))


class NastyException(Exception):
    """ really nasty """

    def __eq__(self, other):
        return type(other) is type(self) and other.args == self.args

    __hash__ = Exception.__hash__


class RpcErrorTest(unittest.TestCase):
    def test_status_and_message(self):
        sut = RpcError(StatusCode.UNAVAILABLE, 'gone')
        assert_that(sut, has_property('status', StatusCode.UNAVAILABLE))
        assert_that(sut, has_property('message', 'gone'))
        assert_that(str(sut), is_('UNAVAILABLE: gone'))

    def test_is_an_io_error(self):
        assert_that(RpcError(StatusCode.INTERNAL), is_(instance_of(IOError)))


class FutureValueTestCase(unittest.TestCase):

    def test_default_value_extractor_returns_value(self):
        f = FutureValue()
        f.set_result(123)
        assert_that(f.value(), equal_to(123))

    def test_can_set_value_extractor(self):
        f = FutureValue()
        f.set_result([1, 2, 3])
        f._value_extractor = lambda x: " ".join(map(str, x))
        assert_that(f.value(), equal_to("1 2 3"))

    def test_exception_value_is_raised(self):
        f = FutureValue()
        f.set_result(NastyException('the eggs are off'))
        assert_that(calling(f.value), raises(NastyException))

    @timeout_decorator.timeout(debug_timeout(2))
    def test_timeout_is_deadline_exceeded(self):
        sut = FutureValue()
        try:
            sut.value(0.01)
            self.fail("expected RpcError")
        except RpcError as e:
            assert_that(e.status, is_(StatusCode.DEADLINE_EXCEEDED))


class FutureResponseTestCase(unittest.TestCase):

    def setUp(self):
        self.request = Request()
        self.future = FutureResponse(self.request)

    def test_request(self):
        self.assertEqual(self.future.request, self.request)

    def test_future_response_value_from_response(self):
        self.future.set_result(ResponseSupport(1, 123))
        assert_that(self.future.value(1), is_(123))

    def test_response_error_value_is_raised(self):
        self.future.set_result(ResponseSupport(1, RpcError(StatusCode.NOT_FOUND, 'no such method')))
        assert_that(calling(self.future.value).with_args(1), raises(RpcError, 'NOT_FOUND'))

    def test_request_key(self):
        response = ResponseSupport(123)
        assert_that(response.response_key, is_(123))


class AsyncLoopTest(unittest.TestCase):
    @timeout_decorator.timeout(debug_timeout(2))
    def test_real_thread(self):
        thread = None
        sut = None
        loop_thread = None

        def fn():
            nonlocal thread, loop_thread
            thread = threading.current_thread()
            loop_thread = sut.background_thread
        loop = Mock(side_effect=fn)
        sut = AsyncLoop(loop)
        sut.start()
        while not loop.call_count:
            time.sleep(0)

        assert_that(sut.running(), is_(True))
        assert_that(thread, is_not(None))
        assert_that(thread, is_(loop_thread))
        assert_that(thread.daemon, is_(True))
        sut.stop()
        assert_that(sut.running(), is_(False))
        assert_that(sut.background_thread, is_(None))
        assert_that(thread.is_alive(), is_(False))

    @timeout_decorator.timeout(debug_timeout(1))
    def test_run_loops_until_stopped(self):
        running = Mock(return_value=True)

        def fn():
            if running.call_count > 1:
                running.return_value = False

        loop = Mock(side_effect=fn)
        sut = AsyncLoop(loop)
        sut.running = running
        sut._run()
        self.assertEqual(loop.mock_calls, [call(), call()])

    @timeout_decorator.timeout(debug_timeout(1))
    def test_an_exception_does_not_stop_the_loop(self):
        running = Mock(return_value=True)

        def fn():
            if running.call_count == 10:
                running.return_value = False
            raise NastyException()

        loop = Mock(side_effect=fn)
        sut = AsyncLoop(loop)
        sut.running = running
        sut.exception_handler = Mock()
        sut._run()
        self.assertEqual(loop.call_count, 10)
        self.assertEqual(sut.exception_handler.call_count, 10)
        sut.exception_handler.assert_called_with(NastyException())

    @patch('threading.Thread')
    def test_starting_an_already_started_loop(self, thread):
        sut = AsyncLoop([])
        the_thread = Mock()
        thread.return_value = the_thread
        sut.start()
        thread.assert_called_once()
        assert_that(sut.background_thread, is_(the_thread))
        assert_that(the_thread.daemon, is_(True))
        the_thread.start.assert_called_once()
        thread.reset_mock()
        sut.start()
        thread.assert_not_called()

    def test_stop_when_not_started_is_harmless(self):
        sut = AsyncLoop()
        sut.stop()

    def test_signal_stop_does_not_wait(self):
        sut = AsyncLoop()
        sut.background_thread = Mock()
        sut.signal_stop()
        assert_that(sut.running(), is_(False))
        sut.background_thread.join.assert_not_called()

    def test_default_exception_handler_logs_exception(self):
        sut = AsyncLoop(None)
        sut.logger = Mock()
        e = NastyException()
        sut.exception_handler(e)
        sut.logger.exception.assert_called_once_with(e)

    @timeout_decorator.timeout(debug_timeout(2))
    def test_calling_stop_on_loop(self):
        sut = None

        def stop():
            sut.stop()

        sut = AsyncLoop(stop)
        sut.start()
        while sut.background_thread:  # pragma no cover - non-deterministic
            time.sleep(0)
        sut.stop()


class BaseAsyncProtocolHandlerTest(unittest.TestCase):
    def setUp(self):
        self.conduit = Mock()
        self.sut = BaseAsyncProtocolHandler(self.conduit)

    def register(self, *keys):
        request = Mock()
        request.response_keys = keys
        future = FutureResponse(request)
        self.sut._register_future(future)
        return future

    def test_add_unmatched_response_handler(self):
        handler = Mock()
        sut = self.sut
        sut.add_unmatched_response_handler(handler)
        sut.add_unmatched_response_handler(handler)
        self.assertEqual(len(sut._unmatched), 1, 'expected handler to be added only once')
        handler.assert_not_called()

    def test_async_request(self):
        request = Mock()
        request.response_keys = [1]
        sut = self.sut
        sut._stream_request = Mock()
        result = sut.async_request(request)
        assert_that(result, is_(instance_of(FutureResponse)))
        assert_that(result.request, is_(request))
        sut._stream_request.assert_called_once_with(request)
        assert_that(sut._requests[1], is_([result]))

    def test_async_request_send_failure_unregisters(self):
        request = Mock()
        request.response_keys = [1]
        self.sut._stream_request = Mock(side_effect=OSError("broken pipe"))
        assert_that(calling(self.sut.async_request).with_args(request), raises(OSError))
        assert_that(self.sut._requests, is_(empty()))

    def test_stream_request_writes_and_flushes(self):
        request = Mock()
        self.sut._stream_request_sent = Mock()
        self.sut._stream_request(request)
        request.to_stream.assert_called_once_with(self.conduit.output)
        self.conduit.output.flush.assert_called_once()
        self.sut._stream_request_sent.assert_called_once_with(request)

    def test_register_future_no_response_keys_is_not_registered(self):
        request = Mock()
        request.response_keys = None
        future = FutureResponse(request)
        self.sut._register_future(future)
        assert_that(len(self.sut._requests), is_(0))

    def test_register_future_multiple_keys_is_registered_with_each_key(self):
        future = self.register(1, 2)
        future2 = self.register(1)
        assert_that(self.sut._requests[1], is_([future, future2]))
        assert_that(self.sut._requests[2], is_([future]))
        assert_that(self.sut._unregister_future(future), is_(True))
        assert_that(self.sut._requests[1], is_([future2]))
        assert_that(self.sut._requests, is_not(has_key(2)))
        self.sut._unregister_future(future2)
        assert_that(self.sut._requests, is_(empty()))

    def test_unregister_future_twice(self):
        future = self.register(1)
        assert_that(self.sut._unregister_future(future), is_(True))
        assert_that(self.sut._unregister_future(future), is_(False))

    def test_fail_pending_completes_every_future(self):
        futures = [self.register(1), self.register(2), self.register(3, 4)]
        error = RpcError(StatusCode.UNAVAILABLE, 'closed')
        self.sut.fail_pending(error)
        for f in futures:
            assert_that(f.exception(0), is_(error))
        assert_that(self.sut._requests, is_(empty()))

    def test_register_after_fail_pending_raises_the_failure(self):
        error = RpcError(StatusCode.UNAVAILABLE, 'closed')
        self.sut.fail_pending(error)
        self.sut.fail_pending(RpcError(StatusCode.UNAVAILABLE, 'closed again'))
        assert_that(calling(self.register).with_args(1), raises(RpcError, 'UNAVAILABLE: closed$'))
        assert_that(self.sut._requests, is_(empty()))

    def test_async_request_after_fail_pending_sends_nothing(self):
        request = Mock()
        request.response_keys = [1]
        self.sut._stream_request = Mock()
        self.sut.fail_pending(RpcError(StatusCode.UNAVAILABLE, 'closed'))
        assert_that(calling(self.sut.async_request).with_args(request), raises(RpcError, 'UNAVAILABLE'))
        self.sut._stream_request.assert_not_called()

    def test_response_after_fail_pending_leaves_the_failure(self):
        future = self.register(1)
        matched = self.sut._matching_futures(ResponseSupport(1, 2))
        error = RpcError(StatusCode.UNAVAILABLE, 'closed')
        self.sut.fail_pending(error)
        self.sut._matching_futures = Mock(return_value=matched)
        self.sut.process_response(ResponseSupport(1, 2))
        assert_that(future.exception(0), is_(error))

    def test_fail_pending_after_response_leaves_the_response(self):
        future = self.register(1)
        response = ResponseSupport(1, 2)
        self.sut.process_response(response)
        self.sut.fail_pending(RpcError(StatusCode.UNAVAILABLE, 'closed'))
        assert_that(future.result(0), is_(response))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_responses_racing_fail_pending_complete_each_future_once(self):
        futures = [self.register(key) for key in range(200)]
        errors = []

        def respond():
            try:
                for key in range(200):
                    self.sut.process_response(ResponseSupport(key, key))
            except Exception as e:
                errors.append(e)

        thread = threading.Thread(target=respond)
        thread.start()
        self.sut.fail_pending(RpcError(StatusCode.UNAVAILABLE, 'closed'))
        thread.join()
        assert_that(errors, is_(empty()))
        for f in futures:
            assert_that(f.done(), is_(True))

    def test_background_loop(self):
        assert_delegates(self.sut, 'background_loop', 'read_response_async')

    def test_read_response_async_stops_thread_if_conduit_is_closed(self):
        self.conduit.open = False
        self.sut.async_thread = Mock()
        result = self.sut.read_response_async()
        self.sut.async_thread.stop.assert_called_once()
        self.assertIsNone(result)

    def test_read_response_async_calls_read_response(self):
        self.conduit.open = True
        assert_delegates(self.sut, 'read_response_async', 'read_response')

    def test_read_response(self):
        response = ResponseSupport(1, 2)
        self.sut._decode_response = Mock(return_value=response)
        self.sut.process_response = Mock(return_value=Mock())
        result = self.sut.read_response()
        self.assertEqual(result, self.sut.process_response.return_value)
        self.sut.process_response.assert_called_once_with(response)

    def test_process_response_empty(self):
        self.assertIsNone(self.sut.process_response(None))

    def test_process_response_unsolicited(self):
        response = ResponseSupport(1, 2)
        handler = Mock()
        self.sut.add_unmatched_response_handler(handler)
        self.assertIs(self.sut.process_response(response), response)
        handler.assert_called_once_with(response)

    def test_process_response_matching(self):
        response = ResponseSupport(1, 2)
        handler = Mock()
        future1 = FutureResponse(Mock())
        future2 = FutureResponse(Mock())
        self.sut._matching_futures = Mock(return_value=[future1, future2])
        self.sut._set_future_response = Mock()
        self.sut.add_unmatched_response_handler(handler)
        self.assertIs(self.sut.process_response(response), response)
        self.assertEqual(self.sut._set_future_response.mock_calls, [call(future1, response), call(future2, response)])
        handler.assert_not_called()

    def test_set_future_response(self):
        future = FutureResponse(Mock())
        response = ResponseSupport(1, 2)
        self.sut._unregister_future = Mock(return_value=True)
        self.sut._set_future_response(future, response)
        self.assertEqual(future.result(0), response)
        self.sut._unregister_future.assert_called_once_with(future)

    def test_set_future_response_for_a_discarded_future(self):
        future = FutureResponse(Mock())
        self.sut._unregister_future = Mock(return_value=False)
        self.sut._set_future_response(future, ResponseSupport(1, 2))
        assert_that(future.done(), is_(False))

    def test_start_background_thread(self):
        sut = self.sut
        sut.async_thread = Mock()
        sut.start_background_thread()
        sut.async_thread.start.assert_called_once()

    def test_decode_response_is_abstract(self):
        assert_that(calling(self.sut._decode_response), raises(NotImplementedError))


if __name__ == '__main__':  # pragma no cover
    unittest.main()
