"""Tests for the search engine provider clients."""

import asyncio
import json
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from sitemap_submitter.config import Config, RetryConfig
from sitemap_submitter.errors import ConfigurationError
from sitemap_submitter.models import ProviderStatus
from sitemap_submitter.submitter.error_handler import ErrorHandler
from sitemap_submitter.submitter.providers.bing import BingWebmasterClient, chunk
from sitemap_submitter.submitter.providers.google import GoogleIndexingClient
from sitemap_submitter.submitter.providers.mock import MockAPIClient

URLS = ["https://example.com/a", "https://example.com/b", "https://example.com/c"]


def make_config():
    """Configuration with credentials for both providers."""
    config = Config()
    config.sitemap.url = "https://example.com/sitemap.xml"
    config.google_service_account_key = json.dumps({"client_email": "svc@example.iam.gserviceaccount.com"})
    config.bing_api_key = "bing-key"
    return config


def ready_google_client(config, error_handler=None):
    """Google client with credentials already loaded."""
    client = GoogleIndexingClient(config, error_handler=error_handler)
    client.credentials = MagicMock(valid=True, token="access-token")
    client.initialized = True
    return client


class TestQuotaGate(unittest.TestCase):
    """Test cases for the quota gate shared by every client."""

    def test_exhausted_quota_makes_no_calls(self):
        """Test an exhausted quota fails every URL without any HTTP call."""
        config = make_config()
        client = GoogleIndexingClient(config)
        client.quota.used = client.quota.limit

        with patch.object(client, "_post_json", AsyncMock()) as mock_post, \
                patch.object(client, "initialize", AsyncMock()) as mock_init:
            result = asyncio.run(client.submit_urls(URLS))

        mock_post.assert_not_called()
        mock_init.assert_not_called()
        self.assertFalse(result.success)
        self.assertEqual(result.submitted_urls, [])
        self.assertEqual(result.failed_urls, URLS)
        self.assertEqual(result.errors[0].kind, "QUOTA_ERROR")
        self.assertEqual(result.status, ProviderStatus.FAILED)

    def test_partial_quota_submits_remaining_count(self):
        """Test only the remaining quota is submitted and the excess marked failed."""
        config = make_config()
        client = ready_google_client(config)
        client.quota.used = client.quota.limit - 2

        with patch.object(client, "_post_json", AsyncMock(return_value=(200, {}))) as mock_post, \
                patch("asyncio.sleep", AsyncMock()):
            result = asyncio.run(client.submit_urls(URLS))

        self.assertEqual(mock_post.call_count, 2)
        self.assertEqual(result.submitted_urls, URLS[:2])
        self.assertEqual(result.failed_urls, URLS[2:])
        self.assertEqual(result.errors[-1].url, URLS[2])
        self.assertIn("quota insufficient", result.errors[-1].message)
        self.assertTrue(client.quota.exhausted)
        self.assertEqual(result.status, ProviderStatus.PARTIAL)


class TestGoogleIndexingClient(unittest.TestCase):
    """Test cases for the GoogleIndexingClient class."""

    def setUp(self):
        """Set up test environment."""
        self.config = make_config()

    def test_submit_urls(self):
        """Test each URL is published individually with a bearer token."""
        client = ready_google_client(self.config)

        with patch.object(client, "_post_json", AsyncMock(return_value=(200, {}))) as mock_post, \
                patch("asyncio.sleep", AsyncMock()) as mock_sleep:
            result = asyncio.run(client.submit_urls(URLS[:2]))

        self.assertTrue(result.success)
        self.assertEqual(result.submitted_urls, URLS[:2])
        self.assertEqual(result.quota["used"], 2)
        self.assertEqual(result.quota["remaining"], 198)

        args, kwargs = mock_post.call_args_list[0]
        self.assertEqual(args[0], self.config.google.endpoint)
        self.assertEqual(args[1], {"url": URLS[0], "type": "URL_UPDATED"})
        self.assertEqual(kwargs["headers"], {"Authorization": "Bearer access-token"})
        # Delay between calls only
        mock_sleep.assert_called_once_with(0.1)

    def test_per_url_failures_are_isolated(self):
        """Test one rejected URL does not abort the rest."""
        client = ready_google_client(self.config)
        responses = [
            (200, {}),
            (400, {"error": {"message": "Invalid URL"}}),
            (200, {}),
        ]

        with patch.object(client, "_post_json", AsyncMock(side_effect=responses)), \
                patch("asyncio.sleep", AsyncMock()):
            result = asyncio.run(client.submit_urls(URLS))

        self.assertTrue(result.success)
        self.assertEqual(result.submitted_urls, [URLS[0], URLS[2]])
        self.assertEqual(result.failed_urls, [URLS[1]])
        self.assertEqual(result.errors[0].kind, "REQUEST_ERROR")
        self.assertIn("Invalid URL", result.errors[0].message)
        self.assertEqual(client.quota.used, 2)

    def test_server_errors_are_retried(self):
        """Test a 5xx response is retried through the error handler."""
        handler = ErrorHandler(RetryConfig(max_attempts=3, initial_delay_ms=10))
        client = ready_google_client(self.config, error_handler=handler)
        responses = [(503, {"error": {"message": "Backend unavailable"}}), (200, {})]

        with patch.object(client, "_post_json", AsyncMock(side_effect=responses)) as mock_post, \
                patch("asyncio.sleep", AsyncMock()):
            result = asyncio.run(client.submit_urls(URLS[:1]))

        self.assertEqual(mock_post.call_count, 2)
        self.assertEqual(result.submitted_urls, URLS[:1])

    def test_initialize_requires_key(self):
        """Test a missing service account key is a configuration error."""
        self.config.google_service_account_key = ""
        client = GoogleIndexingClient(self.config)

        with self.assertRaises(ConfigurationError):
            asyncio.run(client.initialize())

    def test_initialize_rejects_invalid_json(self):
        """Test a non-JSON service account key is a configuration error."""
        self.config.google_service_account_key = "{not json"
        client = GoogleIndexingClient(self.config)

        with self.assertRaises(ConfigurationError):
            asyncio.run(client.initialize())

    @patch("sitemap_submitter.submitter.providers.google.service_account.Credentials.from_service_account_info")
    def test_initialize_and_check_connection(self, mock_from_info):
        """Test initialization builds scoped credentials and fetches a token."""
        credentials = MagicMock(token="fresh-token", valid=True)
        mock_from_info.return_value = credentials
        client = GoogleIndexingClient(self.config)

        asyncio.run(client.initialize())
        connected = asyncio.run(client.check_connection())

        self.assertTrue(client.initialized)
        self.assertTrue(connected)
        _, kwargs = mock_from_info.call_args
        self.assertEqual(kwargs["scopes"], ["https://www.googleapis.com/auth/indexing"])
        self.assertEqual(credentials.refresh.call_count, 2)

    @patch("sitemap_submitter.submitter.providers.google.Request")
    def test_token_refresh_uses_timeout(self, mock_request):
        """Test the token request is bound to the configured timeout."""
        self.config.google.timeout_sec = 12.5
        client = ready_google_client(self.config)

        token = asyncio.run(client._refresh_token())

        self.assertEqual(token, "access-token")
        request = client.credentials.refresh.call_args.args[0]
        self.assertIs(request.func, mock_request.return_value)
        self.assertEqual(request.keywords, {"timeout": 12.5})

    def test_check_connection_failure(self):
        """Test a connection check without credentials reports False."""
        self.config.google_service_account_key = ""
        client = GoogleIndexingClient(self.config)

        self.assertFalse(asyncio.run(client.check_connection()))


class TestBingWebmasterClient(unittest.TestCase):
    """Test cases for the BingWebmasterClient class."""

    def setUp(self):
        """Set up test environment."""
        self.config = make_config()
        self.urls = [f"https://example.com/p{i}" for i in range(12)]

    def test_chunk(self):
        """Test list chunking."""
        self.assertEqual(chunk([1, 2, 3, 4, 5], 2), [[1, 2], [3, 4], [5]])
        self.assertEqual(chunk([], 10), [])

    def test_submit_in_batches(self):
        """Test URLs are sent as IndexNow batches with a delay between them."""
        client = BingWebmasterClient(self.config)

        with patch.object(client, "_post_json", AsyncMock(return_value=(202, None))) as mock_post, \
                patch("asyncio.sleep", AsyncMock()) as mock_sleep:
            result = asyncio.run(client.submit_urls(self.urls))

        self.assertTrue(result.success)
        self.assertEqual(result.submitted_urls, self.urls)
        self.assertEqual(mock_post.call_count, 2)

        args, _ = mock_post.call_args_list[0]
        self.assertEqual(args[0], "https://api.indexnow.org/indexnow")
        self.assertEqual(args[1], {"host": "example.com", "key": "bing-key", "urlList": self.urls[:10]})
        mock_sleep.assert_called_once_with(1.0)
        self.assertEqual(client.quota.used, 12)

    def test_failed_batch_is_atomic(self):
        """Test a rejected batch marks every URL in it as failed."""
        client = BingWebmasterClient(self.config)
        responses = [(200, None), (403, {"Message": "Site not verified"})]

        with patch.object(client, "_post_json", AsyncMock(side_effect=responses)), \
                patch("asyncio.sleep", AsyncMock()):
            result = asyncio.run(client.submit_urls(self.urls))

        self.assertTrue(result.success)
        self.assertEqual(result.submitted_urls, self.urls[:10])
        self.assertEqual(result.failed_urls, self.urls[10:])
        self.assertEqual([e.url for e in result.errors], self.urls[10:])
        self.assertEqual(result.errors[0].kind, "PERMISSION_ERROR")
        self.assertEqual(client.quota.used, 10)

    def test_legacy_api(self):
        """Test the legacy variant uses the apikey header and treats ErrorCode as failure."""
        self.config.bing.use_indexnow = False
        self.config.bing.api_url = "https://ssl.bing.com/webmaster/api.svc/json/SubmitUrlbatch"
        client = BingWebmasterClient(self.config)
        body = {"ErrorCode": 2, "Message": "ERROR!!! InvalidApiKey"}

        with patch.object(client, "_post_json", AsyncMock(return_value=(200, body))) as mock_post, \
                patch("asyncio.sleep", AsyncMock()):
            result = asyncio.run(client.submit_urls(URLS))

        self.assertFalse(result.success)
        self.assertEqual(result.failed_urls, URLS)
        args, kwargs = mock_post.call_args
        self.assertEqual(args[1], {"siteUrl": "https://example.com", "urlList": URLS})
        self.assertEqual(kwargs["headers"], {"apikey": "bing-key"})

    def test_key_location_included(self):
        """Test an IndexNow key location is sent when configured."""
        self.config.bing.key_location = "https://example.com/key.txt"
        client = BingWebmasterClient(self.config)

        with patch.object(client, "_post_json", AsyncMock(return_value=(200, None))) as mock_post:
            asyncio.run(client.submit_urls(URLS[:1]))

        args, _ = mock_post.call_args
        self.assertEqual(args[1]["keyLocation"], "https://example.com/key.txt")

    def test_initialize_requires_key(self):
        """Test a missing API key is a configuration error."""
        self.config.bing_api_key = ""
        client = BingWebmasterClient(self.config)

        with self.assertRaises(ConfigurationError):
            asyncio.run(client.initialize())

    def test_check_connection(self):
        """Test the connection check posts an empty URL list with the short timeout."""
        client = BingWebmasterClient(self.config)

        with patch.object(client, "_post_json", AsyncMock(return_value=(200, None))) as mock_post:
            self.assertTrue(asyncio.run(client.check_connection()))

        args, kwargs = mock_post.call_args
        self.assertEqual(args[1]["urlList"], [])
        self.assertEqual(kwargs["timeout"], 10.0)

    def test_check_connection_failure(self):
        """Test a rejected connection check reports False."""
        client = BingWebmasterClient(self.config)

        with patch.object(client, "_post_json", AsyncMock(return_value=(401, None))):
            self.assertFalse(asyncio.run(client.check_connection()))


class TestMockAPIClient(unittest.TestCase):
    """Test cases for the MockAPIClient class."""

    def test_accepts_everything(self):
        """Test the mock client accepts all URLs and tracks quota."""
        client = MockAPIClient(make_config(), "google")

        result = asyncio.run(client.submit_urls(URLS))

        self.assertEqual(result.submitted_urls, URLS)
        self.assertEqual(client.get_quota_info()["used"], 3)
        self.assertTrue(client.get_status()["mock"])

        client.reset_quota()
        self.assertEqual(client.quota.used, 0)

    def test_failure_ratio(self):
        """Test the trailing share of URLs is rejected deterministically."""
        client = MockAPIClient(make_config(), "bing", failure_ratio=0.2)
        urls = [f"https://example.com/p{i}" for i in range(5)]

        result = asyncio.run(client.submit_urls(urls))

        self.assertEqual(result.submitted_urls, urls[:4])
        self.assertEqual(result.failed_urls, urls[4:])
        self.assertEqual(result.errors[0].kind, "NETWORK_ERROR")


if __name__ == "__main__":
    unittest.main()
