import io

import pytest

from image_host_server import ServerConfig, create_app

BASE_URL = "http://img.test"


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "files"


@pytest.fixture
def config(upload_dir):
    return ServerConfig(upload_dir=str(upload_dir), base_url=BASE_URL + "/")


@pytest.fixture
def app(config):
    app = create_app(config)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return app.extensions['upload_store']


@pytest.fixture
def upload(client):
    def post_file(payload, filename, field='file'):
        return client.post(
            '/upload',
            data={field: (io.BytesIO(payload), filename)},
            content_type='multipart/form-data',
        )
    return post_file
