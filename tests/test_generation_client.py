"""
Tests for the generation provider client.
"""
from unittest.mock import Mock

import pytest
import requests

from poem_translator.config.constants import ErrorCode
from poem_translator.services.generation_client import GenerationClient, classify_http_error


def http_response(status_code=200, payload=None, text=''):
    response = Mock(status_code=status_code, text=text)
    response.json.return_value = payload if payload is not None else {}
    return response


@pytest.fixture
def client():
    client = GenerationClient(base_url='http://provider.local', model='llama3.1:8b', api_key='')
    client.session = Mock()
    return client


class TestClassifyHttpError:

    @pytest.mark.parametrize('status, body, code', [
        (404, '', ErrorCode.MODEL_NOT_FOUND),
        (400, 'model "x" not found', ErrorCode.MODEL_NOT_FOUND),
        (429, 'slow down', ErrorCode.RATE_LIMIT),
        (401, '', ErrorCode.AUTH_ERROR),
        (503, 'overloaded', ErrorCode.SERVER_ERROR),
        (418, 'teapot', ErrorCode.UNKNOWN),
    ])
    def test_codes(self, status, body, code):
        assert classify_http_error(status, body) == code


class TestGenerate:

    def test_success(self, client):
        client.session.post.return_value = http_response(payload={'response': '{"x": 1}', 'eval_count': 12})

        result = client.generate('prompt')

        assert result.success
        assert result.text == '{"x": 1}'
        assert result.model == 'llama3.1:8b'
        body = client.session.post.call_args.kwargs['json']
        assert body['format'] == 'json'
        assert body['stream'] is False
        assert 'temperature' in body['options']

    def test_unsupported_options_are_omitted(self, client):
        client.session.post.return_value = http_response(payload={'response': 'ok'})

        client.generate('prompt', model='gpt-5')
        assert 'temperature' not in client.session.post.call_args.kwargs['json']['options']

        client.generate('prompt', model='deepseek-r1:8b')
        assert 'format' not in client.session.post.call_args.kwargs['json']

    def test_plain_mode_skips_json_format(self, client):
        client.session.post.return_value = http_response(payload={'response': 'ok'})
        client.generate('prompt', json_mode=False)
        assert 'format' not in client.session.post.call_args.kwargs['json']

    def test_http_error_is_classified(self, client):
        client.session.post.return_value = http_response(status_code=404, text='model not found')

        result = client.generate('prompt', model='missing:1b')

        assert not result.success
        assert result.model_unavailable
        assert result.status_code == 404

    def test_timeout(self, client):
        client.session.post.side_effect = requests.Timeout()
        result = client.generate('prompt')
        assert result.error_code == ErrorCode.TIMEOUT

    def test_connection_error(self, client):
        client.session.post.side_effect = requests.ConnectionError('refused')
        result = client.generate('prompt')
        assert not result.success
        assert result.error_code == ErrorCode.SERVER_ERROR


class TestModels:

    def test_list_models(self, client):
        client.session.get.return_value = http_response(payload={'models': [
            {'name': 'llama3.1:8b', 'size': 4_000_000_000}
        ]})
        models = client.list_models()
        assert [m.name for m in models] == ['llama3.1:8b']

    def test_list_models_unreachable(self, client):
        client.session.get.side_effect = requests.ConnectionError('refused')
        assert client.list_models() == []

    def test_health(self, client):
        client.session.get.return_value = http_response(status_code=200)
        assert client.is_healthy()
        client.session.get.side_effect = requests.ConnectionError('refused')
        assert not client.is_healthy()

    def test_endpoints_follow_base_url(self, client):
        assert client.api_url == 'http://provider.local/api/generate'
        assert client.models_url == 'http://provider.local/api/tags'
