"""Tests for ObjectStoreClient bucket and object operations.

The client talks to FakeS3 through httpx.MockTransport; the clock is fixed
so signatures are reproducible.
"""

import httpx
import pytest
from conftest import (
    ACCESS_KEY,
    ENDPOINT,
    FIXED_NOW,
    SECRET_KEY,
    render_error,
    render_list_buckets,
    render_list_objects,
)

from miniolite.auth import build_string_to_sign, compute_signature, format_rfc1123
from miniolite.client import ObjectStoreClient, close_default, get_default, init_default, normalize_uri
from miniolite.config import ClientConfig, MiniliteConfig, TransportConfig
from miniolite.errors import ConfigurationError

DENIED = render_error("AccessDenied", "Access Denied")


# ---- Construction ------------------------------------------------------------


class TestConstruction:
    """Configuration is validated before anything is opened or sent."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"access_key": "", "secret_key": SECRET_KEY, "endpoint": ENDPOINT},
            {"access_key": ACCESS_KEY, "secret_key": "", "endpoint": ENDPOINT},
            {"access_key": ACCESS_KEY, "secret_key": SECRET_KEY, "endpoint": ""},
            {"access_key": ACCESS_KEY, "secret_key": SECRET_KEY, "endpoint": "s3.example.com"},
            {"access_key": None, "secret_key": SECRET_KEY, "endpoint": ENDPOINT},
        ],
    )
    def test_invalid_config_raises(self, kwargs):
        with pytest.raises(ConfigurationError):
            ObjectStoreClient(**kwargs)

    def test_default_bucket(self):
        with ObjectStoreClient(ACCESS_KEY, SECRET_KEY, ENDPOINT, bucket="") as client:
            assert client.bucket == "default"

    def test_endpoint_trailing_slash_removed(self):
        with ObjectStoreClient(ACCESS_KEY, SECRET_KEY, ENDPOINT + "/") as client:
            assert client.endpoint == ENDPOINT

    def test_from_config(self, fake):
        config = MiniliteConfig(
            client=ClientConfig(
                access_key=ACCESS_KEY, secret_key=SECRET_KEY, endpoint=ENDPOINT, bucket="media"
            )
        )
        with ObjectStoreClient.from_config(config, http_transport=httpx.MockTransport(fake)) as client:
            assert client.bucket == "media"

    def test_transport_config_applied(self):
        tc = TransportConfig(low_speed_limit=5, low_speed_time=12.0)
        with ObjectStoreClient(ACCESS_KEY, SECRET_KEY, ENDPOINT, transport_config=tc) as client:
            assert client._transport.low_speed_limit == 5
            assert client._transport.low_speed_time == 12.0

    def test_context_manager_closes(self):
        with ObjectStoreClient(ACCESS_KEY, SECRET_KEY, ENDPOINT) as client:
            assert not client.closed
        assert client.closed
        client.close()


# ---- URIs ----------------------------------------------------------------------


class TestUris:
    """URI composition and public URLs."""

    @pytest.mark.parametrize(
        "segments",
        [
            ("a", "b/c"),
            ("/a/", "/b/c/"),
            ("a/", "b/c"),
            ("/a", "b/c/"),
            ("//a//", "//b/c//"),
        ],
    )
    def test_normalize_variants(self, segments):
        assert normalize_uri(*segments) == "a/b/c"

    def test_normalize_drops_empty_segments(self):
        assert normalize_uri("", "/b/") == "b"

    def test_object_uri(self, client):
        assert client.get_object_uri("pics/a.png") == "media/pics/a.png"
        assert client.get_object_uri("/pics/a.png/") == "media/pics/a.png"

    def test_object_url(self, client):
        assert client.get_object_url("pics/a.png") == "https://cdn.example.com/media/pics/a.png"

    def test_object_url_trailing_slash_domain(self, client):
        client.domain = "https://cdn.example.com/"
        assert client.get_object_url("/pics/a.png") == "https://cdn.example.com/media/pics/a.png"

    def test_object_url_requires_domain(self):
        with ObjectStoreClient(ACCESS_KEY, SECRET_KEY, ENDPOINT, bucket="media") as client:
            with pytest.raises(ConfigurationError):
                client.get_object_url("pics/a.png")

    def test_set_bucket(self, client):
        assert client.set_bucket("/other/") is client
        assert client.get_object_uri("k") == "other/k"


# ---- Signing on the wire -------------------------------------------------------


class TestSignedRequests:
    """Requests leave the client with Date and Authorization headers."""

    def test_list_buckets_signature(self, client, fake):
        fake.on("GET", "/", body=render_list_buckets([]))
        client.list_buckets()

        request = fake.requests[0]
        date = format_rfc1123(FIXED_NOW)
        expected = compute_signature(SECRET_KEY, build_string_to_sign("GET", "/", {}, date))
        assert request.headers["Date"] == date
        assert request.headers["Authorization"] == f"AWS {ACCESS_KEY}:{expected}"

    def test_each_request_signed_fresh(self, client, fake):
        fake.on("GET", "/", body=render_list_buckets([]))
        fake.on("GET", "/media", body=render_list_objects("media", []))
        client.list_buckets()
        client.get_bucket("media")
        first, second = (r.headers["Authorization"] for r in fake.requests)
        assert first != second


# ---- Buckets -------------------------------------------------------------------


class TestListBuckets:
    """Single- and multi-bucket shapes normalize to a list of names."""

    def test_single_bucket(self, client, fake):
        fake.on("GET", "/", body=render_list_buckets(["alpha"]))
        result = client.list_buckets()
        assert result.ok
        assert result.data == {"Buckets": ["alpha"]}

    def test_single_bucket_shape_without_namespace(self, client, fake):
        body = b"<R><Buckets><Bucket><Name>alpha</Name></Bucket></Buckets></R>"
        fake.on("GET", "/", body=body)
        assert client.list_buckets().data == {"Buckets": ["alpha"]}

    def test_multiple_buckets(self, client, fake):
        fake.on("GET", "/", body=render_list_buckets(["alpha", "beta"]))
        assert client.list_buckets().data == {"Buckets": ["alpha", "beta"]}

    def test_no_buckets(self, client, fake):
        fake.on("GET", "/", body=render_list_buckets([]))
        assert client.list_buckets().data == {"Buckets": []}

    def test_with_headers(self, client, fake):
        fake.on("GET", "/", body=render_list_buckets(["alpha"]), headers={"x-amz-request-id": "r1"})
        result = client.list_buckets(with_headers=True)
        assert result.data["code"] == 200
        assert result.data["headers"]["x-amz-request-id"] == "r1"
        assert result.data["data"] == {"Buckets": ["alpha"]}

    def test_error(self, client, fake):
        fake.on("GET", "/", status=403, body=DENIED)
        result = client.list_buckets()
        assert result.status == 1
        assert result.code == 403
        assert result.message == "Access Denied"
        assert result.data["Code"] == "AccessDenied"


class TestBucketOperations:
    """create_bucket, delete_bucket and get_bucket."""

    def test_create_bucket(self, client, fake):
        fake.on("PUT", "/photos")
        assert client.create_bucket("/photos/") is True
        assert fake.calls() == [("PUT", "/photos")]

    def test_create_bucket_conflict(self, client, fake):
        fake.on("PUT", "/photos", status=409, body=render_error("BucketAlreadyExists", "taken"))
        assert client.create_bucket("photos") is False

    def test_delete_bucket_204(self, client, fake):
        fake.on("DELETE", "/photos", status=204)
        assert client.delete_bucket("photos") is True

    def test_delete_bucket_200_is_not_success(self, client, fake):
        fake.on("DELETE", "/photos", status=200)
        assert client.delete_bucket("photos") is False

    def test_get_bucket_single_object_wrapped(self, client, fake):
        fake.on("GET", "/media", body=render_list_objects("media", ["a.png"]))
        result = client.get_bucket("media")
        assert result.ok
        assert [c["Key"] for c in result.data["Contents"]] == ["a.png"]

    def test_get_bucket_multiple_objects(self, client, fake):
        fake.on("GET", "/media", body=render_list_objects("media", ["a.png", "b.png"]))
        result = client.get_bucket("media", with_headers=True)
        assert [c["Key"] for c in result.data["data"]["Contents"]] == ["a.png", "b.png"]

    def test_get_bucket_missing(self, client, fake):
        fake.on("GET", "/nope", status=404, body=render_error("NoSuchBucket", "The specified bucket does not exist."))
        result = client.get_bucket("nope")
        assert not result.ok
        assert result.message == "The specified bucket does not exist."


# ---- Objects -------------------------------------------------------------------


@pytest.fixture
def upload_file(tmp_path):
    path = tmp_path / "a.png"
    path.write_bytes(b"\x89PNG fake image")
    return path


class TestPutObject:
    """check → create-if-absent → upload."""

    def test_creates_missing_bucket_before_upload(self, client, fake, upload_file):
        fake.on("GET", "/", body=render_list_buckets(["other"]))
        fake.on("PUT", "/media")
        fake.on("PUT", "/media/pics/a.png", headers={"ETag": '"abc"'})

        result = client.put_object(upload_file, "pics/a.png")

        assert result.ok
        assert fake.calls() == [("GET", "/"), ("PUT", "/media"), ("PUT", "/media/pics/a.png")]

    def test_existing_bucket_not_created(self, client, fake, upload_file):
        fake.on("GET", "/", body=render_list_buckets(["media"]))
        fake.on("PUT", "/media/pics/a.png")

        assert client.put_object(upload_file, "/pics/a.png").ok
        assert fake.calls() == [("GET", "/"), ("PUT", "/media/pics/a.png")]

    def test_uploads_file_contents(self, client, fake, upload_file):
        fake.on("GET", "/", body=render_list_buckets(["media"]))
        fake.on("PUT", "/media/pics/a.png")

        client.put_object(upload_file, "pics/a.png")

        upload = fake.requests[-1]
        assert fake.bodies[-1] == b"\x89PNG fake image"
        assert upload.headers["Content-Type"] == "image/png"
        date = format_rfc1123(FIXED_NOW)
        sts = build_string_to_sign("PUT", "/media/pics/a.png", {"Content-Type": "image/png"}, date)
        assert upload.headers["Authorization"] == f"AWS {ACCESS_KEY}:{compute_signature(SECRET_KEY, sts)}"

    def test_list_error_returned_verbatim(self, client, fake, upload_file):
        fake.on("GET", "/", status=403, body=DENIED)

        result = client.put_object(upload_file, "pics/a.png")

        assert result.code == 403
        assert result.message == "Access Denied"
        assert result.data == {"Code": "AccessDenied", "Message": "Access Denied"}
        assert fake.calls() == [("GET", "/")]

    def test_create_failure_stops_upload(self, client, fake, upload_file):
        fake.on("GET", "/", body=render_list_buckets([]))
        fake.on("PUT", "/media", status=409, body=render_error("BucketAlreadyExists", "taken"))

        result = client.put_object(upload_file, "pics/a.png")

        assert not result.ok
        assert result.code == 409
        assert fake.calls() == [("GET", "/"), ("PUT", "/media")]

    def test_upload_error(self, client, fake, upload_file):
        fake.on("GET", "/", body=render_list_buckets(["media"]))
        fake.on("PUT", "/media/pics/a.png", status=500, body=render_error("InternalError", "We encountered an internal error."))

        result = client.put_object(upload_file, "pics/a.png")
        assert result.status == 1
        assert result.message == "We encountered an internal error."

    def test_missing_local_file(self, client, fake, tmp_path):
        fake.on("GET", "/", body=render_list_buckets(["media"]))
        result = client.put_object(tmp_path / "missing.bin", "k")
        assert not result.ok
        assert result.code is None
        assert fake.calls() == [("GET", "/")]


class TestGetObject:
    """get_object and get_object_info."""

    def test_get_object_bytes(self, client, fake):
        fake.on("GET", "/media/pics/a.png", body=b"\x00\x01binary", headers={"Content-Type": "image/png"})
        result = client.get_object("pics/a.png")
        assert result.ok
        assert result.data == b"\x00\x01binary"

    def test_get_object_with_headers(self, client, fake):
        fake.on("GET", "/media/pics/a.png", body=b"data", headers={"Content-Type": "image/png"})
        result = client.get_object("pics/a.png", with_headers=True)
        assert result.data["data"] == b"data"
        assert result.data["headers"]["content-type"] == "image/png"

    def test_get_object_missing(self, client, fake):
        fake.on("GET", "/media/nope", status=404, body=render_error("NoSuchKey", "The specified key does not exist."))
        result = client.get_object("nope")
        assert result.status == 1
        assert result.message == "The specified key does not exist."

    def test_object_info_headers(self, client, fake):
        fake.on("HEAD", "/media/pics/a.png", headers={"Content-Type": "image/png", "ETag": '"abc"'})
        result = client.get_object_info("pics/a.png")
        assert result.ok
        assert result.data["content-type"] == "image/png"
        assert result.headers is None

    def test_object_info_missing(self, client, fake):
        fake.on("HEAD", "/media/nope", status=404)
        result = client.get_object_info("nope")
        assert result.status == 1
        assert result.message == "Not Found"


class TestCopyDeleteMove:
    """copy_object, delete_object and the copy → delete move."""

    def test_copy_sends_source_header(self, client, fake):
        fake.on("PUT", "/media/b.png")
        assert client.copy_object("/a.png", "b.png") is True
        assert fake.requests[0].headers["x-amz-copy-source"] == "media/a.png"

    def test_delete_object(self, client, fake):
        fake.on("DELETE", "/media/a.png", status=204)
        assert client.delete_object("a.png") is True

    def test_delete_dot_segment_key_sent_as_signed(self, client, fake):
        fake.on("DELETE", "/media/logs/../secret.txt", status=204)
        assert client.delete_object("logs/../secret.txt") is True

        request = fake.requests[0]
        assert request.url.raw_path == b"/media/logs/%2E%2E/secret.txt"
        date = format_rfc1123(FIXED_NOW)
        expected = compute_signature(
            SECRET_KEY,
            build_string_to_sign("DELETE", "/media/logs/%2E%2E/secret.txt", {}, date),
        )
        assert request.headers["Authorization"] == f"AWS {ACCESS_KEY}:{expected}"

    def test_delete_object_wrong_code(self, client, fake):
        fake.on("DELETE", "/media/a.png", status=200)
        assert client.delete_object("a.png") is False

    def test_move_success(self, client, fake):
        fake.on("PUT", "/media/b.png")
        fake.on("DELETE", "/media/a.png", status=204)
        assert client.move_object("a.png", "b.png") is True
        assert fake.calls() == [("PUT", "/media/b.png"), ("DELETE", "/media/a.png")]

    def test_move_copy_fails_no_delete(self, client, fake):
        fake.on("PUT", "/media/b.png", status=404, body=render_error("NoSuchKey", "The specified key does not exist."))
        fake.on("DELETE", "/media/a.png", status=204)

        assert client.move_object("a.png", "b.png") is False
        assert fake.calls() == [("PUT", "/media/b.png")]

    def test_move_delete_fails(self, client, fake):
        fake.on("PUT", "/media/b.png")
        fake.on("DELETE", "/media/a.png", status=403, body=DENIED)
        assert client.move_object("a.png", "b.png") is False

    def test_move_result_reports_failing_step(self, client, fake):
        fake.on("PUT", "/media/b.png", status=404, body=render_error("NoSuchKey", "The specified key does not exist."))
        result = client.move_object_result("a.png", "b.png")
        assert result.code == 404
        assert result.message == "The specified key does not exist."


# ---- Transport failures --------------------------------------------------------


class TestTransportFailures:
    """Network failures come back as error envelopes, not exceptions."""

    @pytest.fixture
    def broken(self, fake):
        def refuse(request):
            raise httpx.ConnectError("connection refused")

        for method, path in [("GET", "/"), ("PUT", "/media"), ("DELETE", "/media/a.png")]:
            fake.on_call(method, path, refuse)
        return fake

    def test_list_buckets_envelope(self, client, broken):
        result = client.list_buckets()
        assert result.status == 1
        assert result.code is None
        assert "connection refused" in result.message

    def test_boolean_operations_false(self, client, broken):
        assert client.create_bucket("media") is False
        assert client.delete_object("a.png") is False

    def test_put_object_stops_at_check(self, client, broken, upload_file):
        result = client.put_object(upload_file, "a.png")
        assert not result.ok
        assert broken.calls() == [("GET", "/")]


# ---- Default instance ----------------------------------------------------------


class TestDefaultRegistry:
    """Explicit init/get/close of the process-wide default client."""

    def teardown_method(self):
        close_default()

    def test_get_before_init_raises(self):
        close_default()
        with pytest.raises(ConfigurationError):
            get_default()

    def test_init_with_client(self, client):
        assert init_default(client) is client
        assert get_default() is client

    def test_init_with_config(self):
        client = init_default(
            ClientConfig(access_key=ACCESS_KEY, secret_key=SECRET_KEY, endpoint=ENDPOINT)
        )
        assert get_default() is client
        assert client.bucket == "default"

    def test_reinit_closes_previous(self):
        first = init_default(ClientConfig(access_key=ACCESS_KEY, secret_key=SECRET_KEY, endpoint=ENDPOINT))
        second = init_default(ClientConfig(access_key=ACCESS_KEY, secret_key=SECRET_KEY, endpoint=ENDPOINT))
        assert first.closed
        assert get_default() is second

    def test_close_default(self, client):
        init_default(client)
        close_default()
        close_default()
        assert client.closed
        with pytest.raises(ConfigurationError):
            get_default()

    def test_invalid_config_raises(self):
        with pytest.raises(ConfigurationError):
            init_default(ClientConfig(endpoint=ENDPOINT))
