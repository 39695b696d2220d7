import pytest


class FakeStore:
    """Scripted ObjectStore: answers every call with a preset status code."""

    def __init__(self, name='mybucket', head=404, create=200, delete=204,
                 put=200, delete_object=204, get=200, data=b''):
        self.name = name
        self.statuses = {
            'head_object': head,
            'create_bucket': create,
            'delete_bucket': delete,
            'put_object': put,
            'delete_object': delete_object,
            'get_object': get,
        }
        self.data = data
        self.calls = []

    def head_object(self, path):
        self.calls.append(('head_object', path))
        return b'', self.statuses['head_object']

    def create_bucket(self):
        self.calls.append(('create_bucket',))
        return self.statuses['create_bucket']

    def delete_bucket(self):
        self.calls.append(('delete_bucket',))
        return self.statuses['delete_bucket']

    def put_object(self, path, data):
        self.calls.append(('put_object', path, data))
        return b'', self.statuses['put_object']

    def delete_object(self, path):
        self.calls.append(('delete_object', path))
        return b'', self.statuses['delete_object']

    def get_object(self, path):
        self.calls.append(('get_object', path))
        return self.data, self.statuses['get_object']


@pytest.fixture
def fake_store():
    return FakeStore


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Run inside an empty directory with a private home and no credential env vars."""
    home = tmp_path / 'home'
    home.mkdir()
    work = tmp_path / 'work'
    work.mkdir()
    monkeypatch.chdir(work)
    monkeypatch.setenv('HOME', str(home))
    for name in ('ACCESS_KEY', 'SECRET_KEY', 'DEBUG', 'S3_ENDPOINT', 'AWS_DEFAULT_REGION'):
        monkeypatch.delenv(name, raising=False)
    return work
