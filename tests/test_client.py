"""Tests for the aiohttp REST client against a local fake service."""

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from cloudfiles.errors import TransportError, ValidationError
from cloudfiles.file.chunker import compute_md5
from cloudfiles.rest.client import SERVICE_VERSION, FileServiceClient
from cloudfiles.rest.models import ContentSettings, FileReference
from cloudfiles.service import FileService
from cloudfiles.transfer.options import TransferOptions

REF = FileReference(share='share', directory='docs', name='hello world.txt')


class FakeFileEndpoint:
    """Just enough of the file REST surface to exercise the client."""

    def __init__(self):
        self.files = {}
        self.requests = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_route('*', '/{path:.*}', self.handle)
        return app

    async def handle(self, request: web.Request) -> web.StreamResponse:
        self.requests.append((request.method, request.path, dict(request.query),
                              dict(request.headers)))
        if request.query.get('sig') != 'secret':
            return web.Response(status=403, headers={'x-ms-error-code': 'AuthenticationFailed'},
                                text='<Error><Code>AuthenticationFailed</Code></Error>')

        path = request.path
        comp = request.query.get('comp')

        if request.method == 'PUT' and comp is None:
            size = int(request.headers['x-ms-content-length'])
            self.files[path] = {
                'data': bytearray(size),
                'md5': None,
                'type': request.headers.get('x-ms-content-type'),
                'meta': {k: v for k, v in request.headers.items() if k.lower().startswith('x-ms-meta-')},
            }
            return web.Response(status=201, headers={'ETag': '"0x1"', 'x-ms-request-id': 'create-1'})

        entry = self.files.get(path)
        if entry is None:
            return web.Response(status=404, headers={'x-ms-error-code': 'ResourceNotFound'},
                                text='The specified resource does not exist.')

        if request.method == 'PUT' and comp == 'range':
            body = await request.read()
            start, end = request.headers['x-ms-range'][len('bytes='):].split('-')
            md5 = request.headers.get('Content-MD5')
            if md5 is not None and md5 != compute_md5(body):
                return web.Response(status=400, headers={'x-ms-error-code': 'Md5Mismatch'})
            entry['data'][int(start):int(end) + 1] = body
            return web.Response(status=201, headers={'Content-MD5': compute_md5(body)})

        if request.method == 'PUT' and comp == 'properties':
            entry['md5'] = request.headers.get('x-ms-content-md5')
            entry['type'] = request.headers.get('x-ms-content-type')
            return web.Response(status=200, headers={'ETag': '"0x2"'})

        if request.method == 'HEAD':
            headers = {'Content-Length': str(len(entry['data'])), 'ETag': '"0x2"'}
            if entry['md5']:
                headers['Content-MD5'] = entry['md5']
            if entry['type']:
                headers['Content-Type'] = entry['type']
            headers.update(entry['meta'])
            return web.Response(status=200, headers=headers)

        if request.method == 'GET':
            start, end = request.headers['x-ms-range'][len('bytes='):].split('-')
            start, end = int(start), min(int(end), len(entry['data']) - 1)
            body = bytes(entry['data'][start:end + 1])
            headers = {'Content-Range': f"bytes {start}-{end}/{len(entry['data'])}"}
            if request.headers.get('x-ms-range-get-content-md5') == 'true':
                headers['Content-MD5'] = compute_md5(body)
            return web.Response(status=206, body=body, headers=headers)

        return web.Response(status=405)


@pytest.fixture
def endpoint():
    return FakeFileEndpoint()


@pytest_asyncio.fixture
async def server(endpoint):
    server = TestServer(endpoint.app())
    await server.start_server()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def client(server):
    client = FileServiceClient(str(server.make_url('')), sas_token='?sv=2014-02-14&sig=secret')
    yield client
    await client.close()


class TestFileServiceClient:

    @pytest.mark.asyncio
    async def test_create_sends_size_settings_and_metadata(self, client, endpoint):
        props = await client.create_file(REF, 10, settings=ContentSettings(content_type='text/plain'),
                                         metadata={'owner': 'ci'})

        method, path, query, headers = endpoint.requests[-1]
        assert method == 'PUT'
        assert path == '/share/docs/hello world.txt'
        assert query['sv'] == '2014-02-14'
        assert headers['x-ms-type'] == 'file'
        assert headers['x-ms-content-length'] == '10'
        assert headers['x-ms-content-type'] == 'text/plain'
        assert headers['x-ms-meta-owner'] == 'ci'
        assert headers['x-ms-version'] == SERVICE_VERSION
        assert props.etag == '"0x1"'
        assert props.response.request_id == 'create-1'

    @pytest.mark.asyncio
    async def test_put_and_get_range(self, client, endpoint):
        await client.create_file(REF, 13)
        await client.put_range(REF, 0, memoryview(b'Hello, World!'), content_md5=compute_md5(b'Hello, World!'))

        _, _, query, headers = endpoint.requests[-1]
        assert query['comp'] == 'range'
        assert headers['x-ms-write'] == 'update'
        assert headers['x-ms-range'] == 'bytes=0-12'

        data, props = await client.get_range(REF, 2, 3, validate_md5=True)
        assert data == b'll'
        assert props.content_md5 == compute_md5(b'll')
        assert props.content_length == 13

    @pytest.mark.asyncio
    async def test_properties_round_trip(self, client):
        await client.create_file(REF, 4, metadata={'owner': 'ci'})
        await client.set_properties(REF, ContentSettings(content_type='text/csv', content_md5='abc=='))

        props = await client.get_properties(REF)
        assert props.content_length == 4
        assert props.content_md5 == 'abc=='
        assert props.content_type == 'text/csv'
        assert props.metadata == {'owner': 'ci'}

    @pytest.mark.asyncio
    async def test_not_found_is_transport_error(self, client):
        with pytest.raises(TransportError) as excinfo:
            await client.get_properties(REF)
        assert excinfo.value.status_code == 404
        assert excinfo.value.error_code == 'ResourceNotFound'
        assert not excinfo.value.retryable

    @pytest.mark.asyncio
    async def test_md5_rejected_by_service(self, client):
        await client.create_file(REF, 4)
        with pytest.raises(TransportError) as excinfo:
            await client.put_range(REF, 0, b'abcd', content_md5=compute_md5(b'wxyz'))
        assert excinfo.value.error_code == 'Md5Mismatch'

    @pytest.mark.asyncio
    async def test_bad_sas_is_forbidden(self, server):
        async with FileServiceClient(str(server.make_url('')), sas_token='sig=wrong') as client:
            with pytest.raises(TransportError) as excinfo:
                await client.create_file(REF, 1)
        assert excinfo.value.status_code == 403
        assert 'AuthenticationFailed' in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_connection_failure_is_retryable(self):
        client = FileServiceClient('http://127.0.0.1:1', timeout=2)
        try:
            with pytest.raises(TransportError) as excinfo:
                await client.get_properties(REF)
            assert excinfo.value.retryable
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_ranged_md5_limit(self, client, endpoint):
        with pytest.raises(ValidationError):
            await client.get_range(REF, 0, 4 * 1024 * 1024, validate_md5=True)
        assert endpoint.requests == []

    def test_account_url_required(self):
        with pytest.raises(ValidationError):
            FileServiceClient('')


class TestServiceOverHttp:

    @pytest.mark.asyncio
    async def test_upload_then_download(self, client):
        service = FileService(client, options=TransferOptions(chunk_size=4,
                                                              parallel_operation_thread_count=2))
        await service.upload_bytes('share', 'docs', 'hello world.txt', b'Hello, World!',
                                   store_content_md5=True, use_transactional_md5=True)

        assert await service.download_bytes('share', 'docs', 'hello world.txt') == b'Hello, World!'
        assert await service.download_bytes('share', 'docs', 'hello world.txt',
                                            range_start=2, range_end=3,
                                            use_transactional_md5=True) == b'll'
