import unittest
from unittest import mock

from ai_review_sync.exceptions import SCMAPIError
from ai_review_sync.utils.retry import retry_call


@mock.patch("ai_review_sync.utils.retry.time.sleep")
class TestRetryCall(unittest.TestCase):
    def test_success_needs_no_sleep(self, sleep):
        self.assertEqual(retry_call(lambda: 42), 42)
        sleep.assert_not_called()

    def test_backoff_is_exponential_and_capped(self, sleep):
        func = mock.Mock(side_effect=[SCMAPIError("down", 503)] * 4 + ["ok"])

        result = retry_call(func, max_attempts=5, base_delay=2.0, max_delay=5.0, exceptions=(SCMAPIError,))

        self.assertEqual(result, "ok")
        self.assertEqual([c.args[0] for c in sleep.call_args_list], [2.0, 4.0, 5.0, 5.0])

    def test_last_error_is_raised(self, sleep):
        func = mock.Mock(side_effect=SCMAPIError("down", 503))

        with self.assertRaises(SCMAPIError):
            retry_call(func, max_attempts=3, exceptions=(SCMAPIError,))

        self.assertEqual(func.call_count, 3)
        self.assertEqual(sleep.call_count, 2)

    def test_non_retryable_error_is_raised_immediately(self, sleep):
        func = mock.Mock(side_effect=SCMAPIError("invalid", 422))

        with self.assertRaises(SCMAPIError):
            retry_call(func, max_attempts=3, exceptions=(SCMAPIError,))

        func.assert_called_once()
        sleep.assert_not_called()

    def test_unlisted_exceptions_propagate(self, sleep):
        func = mock.Mock(side_effect=KeyError("boom"))

        with self.assertRaises(KeyError):
            retry_call(func, exceptions=(SCMAPIError,))

        func.assert_called_once()


if __name__ == '__main__':
    unittest.main()
