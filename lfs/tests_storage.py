import hashlib
import io
from unittest import mock

from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError
from django.test import SimpleTestCase

from lfs.storage import (
    HashingReader,
    ObjectNotInStore,
    ObjectStoreError,
    ObjectStoreTimeout,
    OIDMismatch,
    S3ObjectStore,
    SizeLimitedReader,
    SizeMismatch,
)

KEY = "objects/sha256/ab/cd/abcd"


def drain(reader, chunk=3):
    data = b""
    while True:
        part = reader.read(chunk)
        if not part:
            return data
        data += part


def client_error(code, operation="HeadObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class ReaderTests(SimpleTestCase):

    def test_size_limited_reader_passes_exact_body(self):
        self.assertEqual(drain(SizeLimitedReader(io.BytesIO(b"abcdefg"), 7)), b"abcdefg")

    def test_size_limited_reader_rejects_short_body(self):
        with self.assertRaises(SizeMismatch):
            drain(SizeLimitedReader(io.BytesIO(b"abc"), 7))

    def test_size_limited_reader_rejects_long_body(self):
        with self.assertRaises(SizeMismatch):
            drain(SizeLimitedReader(io.BytesIO(b"abcdefgh"), 7))

    def test_size_limited_reader_never_reads_past_size(self):
        reader = SizeLimitedReader(io.BytesIO(b"abcdef"), 6)
        self.assertEqual(reader.read(100), b"abcdef")
        self.assertEqual(reader.read(100), b"")

    def test_hashing_reader_accepts_matching_content(self):
        content = b"content addressed"
        reader = HashingReader(io.BytesIO(content), hashlib.sha256(content).hexdigest())
        self.assertEqual(drain(reader), content)

    def test_hashing_reader_rejects_other_content(self):
        reader = HashingReader(io.BytesIO(b"other"), hashlib.sha256(b"expected").hexdigest())
        with self.assertRaises(OIDMismatch):
            drain(reader)

    def test_readers_compose(self):
        content = b"x" * 10
        reader = SizeLimitedReader(HashingReader(io.BytesIO(content), hashlib.sha256(content).hexdigest()), 10)
        self.assertEqual(drain(reader, chunk=4), content)


class S3ObjectStoreTests(SimpleTestCase):

    def setUp(self):
        self.storage = mock.Mock()
        self.storage.bucket_name = "lfs-test"
        self.client = self.storage.connection.meta.client
        self.store = S3ObjectStore(storage=self.storage)

    def test_head(self):
        self.client.head_object.return_value = {"ContentLength": 42}
        self.assertEqual(self.store.head(KEY), 42)
        self.client.head_object.assert_called_once_with(Bucket="lfs-test", Key=KEY)

    def test_head_missing_object(self):
        self.client.head_object.side_effect = client_error("404")
        with self.assertRaises(ObjectNotInStore):
            self.store.head(KEY)

    def test_other_client_errors(self):
        self.client.head_object.side_effect = client_error("AccessDenied")
        with self.assertRaises(ObjectStoreError) as cm:
            self.store.head(KEY)
        self.assertNotIsInstance(cm.exception, ObjectNotInStore)

    def test_timeouts(self):
        self.client.get_object.side_effect = ReadTimeoutError(endpoint_url="http://storage.invalid:9000")
        with self.assertRaises(ObjectStoreTimeout):
            self.store.stream_get(KEY)

    def test_connection_errors(self):
        self.client.head_bucket.side_effect = EndpointConnectionError(endpoint_url="http://storage.invalid:9000")
        with self.assertRaises(ObjectStoreError):
            self.store.ping()

    def test_stream_put_wraps_the_body(self):
        body = io.BytesIO(b"12345")
        self.store.stream_put(KEY, body, 5)
        args, kwargs = self.client.upload_fileobj.call_args
        self.assertIsInstance(args[0], SizeLimitedReader)
        self.assertEqual(args[0].size, 5)
        self.assertEqual(args[1:], ("lfs-test", KEY))
        self.assertIs(kwargs["Config"], self.store.transfer_config)

    def test_stream_put_failure(self):
        self.client.upload_fileobj.side_effect = client_error("InternalError", "PutObject")
        with self.assertRaises(ObjectStoreError):
            self.store.stream_put(KEY, io.BytesIO(b"1"), 1)

    def test_stream_get_closes_the_body(self):
        body = mock.Mock()
        body.iter_chunks.return_value = iter([b"ab", b"cd"])
        self.client.get_object.return_value = {"Body": body, "ContentLength": 4}

        chunks, size = self.store.stream_get(KEY)
        self.assertEqual(size, 4)
        body.close.assert_not_called()
        self.assertEqual(list(chunks), [b"ab", b"cd"])
        body.close.assert_called_once_with()

    def test_presign(self):
        self.storage.url.return_value = "https://lfs-test.s3.amazonaws.com/get"
        self.client.generate_presigned_url.return_value = "https://lfs-test.s3.amazonaws.com/put"
        self.assertEqual(self.store.presign_get(KEY, 900), "https://lfs-test.s3.amazonaws.com/get")
        self.storage.url.assert_called_once_with(KEY, expire=900)
        self.assertEqual(self.store.presign_put(KEY, 900), "https://lfs-test.s3.amazonaws.com/put")
        self.client.generate_presigned_url.assert_called_once_with(
            "put_object", Params={"Bucket": "lfs-test", "Key": KEY}, ExpiresIn=900,
        )
