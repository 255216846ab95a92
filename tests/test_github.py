import base64
import unittest
from unittest import mock

import requests

from lrmsync import github


def _response(status_code, payload=None, text=""):
    response = mock.Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = text
    return response


class TestSignatures(unittest.TestCase):
    def test_sign_and_verify(self):
        body = b'{"ref": "refs/heads/main"}'
        header = github.sign_body("s3cret", body)
        self.assertTrue(header.startswith("sha256="))
        self.assertTrue(github.verify_signature("s3cret", body, header))
        self.assertFalse(github.verify_signature("other", body, header))
        self.assertFalse(github.verify_signature("s3cret", body + b" ", header))
        self.assertFalse(github.verify_signature("s3cret", body, None))
        self.assertFalse(github.verify_signature("s3cret", body, header.replace("sha256=", "sha1=")))


class TestGitHubClient(unittest.TestCase):
    def setUp(self):
        self.session = mock.Mock()
        self.client = github.GitHubClient("acme/app", api_url="https://gh.test/", session=self.session)

    def test_branch_head(self):
        self.session.request.return_value = _response(200, {"commit": {"sha": "abc"}})
        self.assertEqual(self.client.branch_head("main"), "abc")
        method, url = self.session.request.call_args.args
        self.assertEqual((method, url), ("GET", "https://gh.test/repos/acme/app/branches/main"))

    def test_list_files_filters_blobs_under_path(self):
        self.session.request.return_value = _response(
            200,
            {
                "tree": [
                    {"path": "res", "type": "tree"},
                    {"path": "res/strings.json", "type": "blob"},
                    {"path": "resources/strings.json", "type": "blob"},
                    {"path": "README.md", "type": "blob"},
                ]
            },
        )
        self.assertEqual(self.client.list_files("abc", path="res"), ["res/strings.json"])
        self.assertEqual(self.session.request.call_args.kwargs["params"], {"recursive": "1"})

    def test_get_file_contents(self):
        encoded = base64.b64encode("{\"a\": \"ä\"}".encode("utf-8")).decode("ascii")
        self.session.request.return_value = _response(200, {"content": encoded, "sha": "blob1"})
        data, sha = self.client.get_file_contents("res/strings.json", "main")
        self.assertEqual(data.decode("utf-8"), "{\"a\": \"ä\"}")
        self.assertEqual(sha, "blob1")

    def test_missing_file_is_none(self):
        self.session.request.return_value = _response(404, {"message": "Not Found"})
        self.assertIsNone(self.client.get_file_contents("res/strings.json", "main"))

    def test_put_file_contents_sends_sha_and_branch(self):
        self.session.request.return_value = _response(201, {"commit": {"sha": "def456"}})
        sha = self.client.put_file_contents("res/strings.json", b"{}", message="m", branch="main", sha="blob1")
        self.assertEqual(sha, "def456")
        body = self.session.request.call_args.kwargs["json"]
        self.assertEqual(body["sha"], "blob1")
        self.assertEqual(body["branch"], "main")
        self.assertEqual(base64.b64decode(body["content"]), b"{}")

    def test_server_errors_are_retryable(self):
        self.session.request.return_value = _response(502, text="bad gateway")
        with self.assertRaises(github.GitHubError) as ctx:
            self.client.branch_head("main")
        self.assertEqual(ctx.exception.status, 502)
        self.assertTrue(ctx.exception.retryable)

    def test_client_errors_are_not_retryable(self):
        self.session.request.return_value = _response(409, text="conflict")
        with self.assertRaises(github.GitHubError) as ctx:
            self.client.put_file_contents("a", b"", message="m", branch="main")
        self.assertFalse(ctx.exception.retryable)

    def test_connection_errors_are_retryable(self):
        self.session.request.side_effect = requests.ConnectionError("down")
        with self.assertRaises(github.GitHubError) as ctx:
            self.client.branch_head("main")
        self.assertTrue(ctx.exception.retryable)

    def test_token_sets_bearer_header(self):
        client = github.GitHubClient("acme/app", token="tok")
        self.assertEqual(client.session.headers["Authorization"], "Bearer tok")


if __name__ == "__main__":
    unittest.main()
