import os

import pytest

from kubetether._cogs.structs.credentials import LoginError
from kubetether._core.intents.piggybacking import get_kubeconfig_paths, has_service_account, \
                                                  login, login_with_kubeconfig, \
                                                  login_with_service_account

# As per https://kubernetes.io/docs/tasks/run-application/access-api-from-pod/
NAMESPACE_PATH = '/var/run/secrets/kubernetes.io/serviceaccount/namespace'
SA_TOKEN_PATH = '/var/run/secrets/kubernetes.io/serviceaccount/token'
CA_PATH = '/var/run/secrets/kubernetes.io/serviceaccount/ca.crt'

MINICONFIG = '''
    kind: Config
    current-context: ctx
    contexts:
      - name: ctx
        context:
          cluster: clstr
          user: usr
    clusters:
      - name: clstr
        cluster:
          server: https://localhost:6443
    users:
      - name: usr
'''

FULLCONFIG = '''
    kind: Config
    current-context: ctx
    contexts:
      - name: ctx
        context:
          cluster: clstr
          user: usr
          namespace: ns
      - name: other
        context:
          cluster: other
          user: usr
    clusters:
      - name: clstr
        cluster:
          server: https://localhost:6443
          certificate-authority: ca.crt
          insecure-skip-tls-verify: true
      - name: other
        cluster:
          server: https://other:6443
          certificate-authority-data: Y2EtZGF0YQ==
    users:
      - name: usr
        user:
          token: tkn
          client-certificate: /abs/cert.pem
          client-key: key.pem
'''


def test_has_no_serviceaccount_when_special_file_is_absent(mocker):
    exists_mock = mocker.patch('os.path.exists', return_value=False)
    assert has_service_account() is False
    assert exists_mock.call_args_list[0][0][0] == SA_TOKEN_PATH


def test_has_serviceaccount_when_special_file_exists(mocker):
    exists_mock = mocker.patch('os.path.exists', return_value=True)
    assert has_service_account() is True
    assert exists_mock.call_args_list[0][0][0] == SA_TOKEN_PATH


def test_serviceaccount_with_all_absent_files(mocker):
    mocker.patch('os.path.exists', return_value=False)
    open_mock = mocker.patch('kubetether._core.intents.piggybacking.open')
    assert login_with_service_account() is None
    assert not open_mock.called


def test_serviceaccount_with_all_present_files(mocker):
    mocker.patch('os.path.exists', return_value=True)
    mocker.patch.dict(os.environ, clear=True,
                      KUBERNETES_SERVICE_HOST='10.0.0.1', KUBERNETES_SERVICE_PORT='8443')
    open_mock = mocker.patch('kubetether._core.intents.piggybacking.open')
    open_mock.return_value.__enter__.return_value.read.side_effect = [' tkn ', ' ns ', RuntimeError]
    info = login_with_service_account()
    assert info is not None
    assert info.server == 'https://10.0.0.1:8443'
    assert info.default_namespace == 'ns'
    assert info.token == 'tkn'
    assert info.ca_path == CA_PATH
    assert [c[0][0] for c in open_mock.call_args_list] == [SA_TOKEN_PATH, NAMESPACE_PATH]


def test_serviceaccount_with_only_the_token_file(mocker):
    mocker.patch('os.path.exists', side_effect=[True, False, False])
    mocker.patch.dict(os.environ, clear=True)
    open_mock = mocker.patch('kubetether._core.intents.piggybacking.open')
    open_mock.return_value.__enter__.return_value.read.side_effect = [' tkn ', RuntimeError]
    info = login_with_service_account()
    assert info is not None
    assert info.server == 'https://kubernetes.default.svc:443'
    assert info.default_namespace is None
    assert info.ca_path is None
    assert info.token == 'tkn'


@pytest.mark.parametrize('envs', [{}, {'KUBECONFIG': ''}], ids=['absent', 'empty'])
def test_no_kubeconfig_paths_when_nothing_is_provided(mocker, envs):
    mocker.patch('os.path.exists', return_value=False)
    mocker.patch.dict(os.environ, envs, clear=True)
    assert get_kubeconfig_paths() == []
    assert login_with_kubeconfig() is None


def test_kubeconfig_paths_from_the_envvar(mocker):
    mocker.patch.dict(os.environ, clear=True, KUBECONFIG=os.pathsep.join(['/a', '', ' /b ']))
    assert get_kubeconfig_paths() == ['/a', '/b']


def test_kubeconfig_paths_from_the_explicit_path(mocker):
    mocker.patch.dict(os.environ, clear=True, KUBECONFIG='/a')
    assert get_kubeconfig_paths('/x') == ['/x']


def test_kubeconfig_paths_from_the_homedir(mocker):
    mocker.patch('os.path.exists', return_value=True)
    mocker.patch.dict(os.environ, clear=True, HOME='/home/me')
    assert get_kubeconfig_paths() == ['/home/me/.kube/config']


def test_absent_kubeconfig_fails(tmp_path):
    with pytest.raises(LoginError, match=r"Cannot read the kubeconfig"):
        login_with_kubeconfig(str(tmp_path / 'config'))


def test_corrupted_kubeconfig_fails(tmp_path):
    kubeconfig = tmp_path / 'config'
    kubeconfig.write_text("""!!acb!.-//:""")  # invalid yaml
    with pytest.raises(LoginError, match=r"Cannot read the kubeconfig"):
        login_with_kubeconfig(str(kubeconfig))


def test_empty_kubeconfig_fails(tmp_path):
    kubeconfig = tmp_path / 'config'
    kubeconfig.write_text('')
    with pytest.raises(LoginError, match=r"context is not set"):
        login_with_kubeconfig(str(kubeconfig))


def test_unknown_context_fails(tmp_path):
    kubeconfig = tmp_path / 'config'
    kubeconfig.write_text(MINICONFIG)
    with pytest.raises(LoginError, match=r"'nope' is not found"):
        login_with_kubeconfig(str(kubeconfig), context='nope')


def test_mini_kubeconfig_reading(tmp_path):
    kubeconfig = tmp_path / 'config'
    kubeconfig.write_text(MINICONFIG)
    info = login_with_kubeconfig(str(kubeconfig))
    assert info is not None
    assert info.server == 'https://localhost:6443'
    assert info.insecure is None
    assert info.token is None
    assert info.ca_path is None
    assert info.certificate_path is None
    assert info.private_key_path is None
    assert info.default_namespace is None


def test_full_kubeconfig_reading(tmp_path):
    kubeconfig = tmp_path / 'config'
    kubeconfig.write_text(FULLCONFIG)
    info = login_with_kubeconfig(str(kubeconfig))
    assert info is not None
    assert info.server == 'https://localhost:6443'
    assert info.insecure is True
    assert info.token == 'tkn'
    assert info.ca_path == str(tmp_path / 'ca.crt')
    assert info.certificate_path == '/abs/cert.pem'
    assert info.private_key_path == str(tmp_path / 'key.pem')
    assert info.default_namespace == 'ns'


def test_explicit_context_is_used(tmp_path):
    kubeconfig = tmp_path / 'config'
    kubeconfig.write_text(FULLCONFIG)
    info = login_with_kubeconfig(str(kubeconfig), context='other')
    assert info is not None
    assert info.server == 'https://other:6443'
    assert info.ca_data == 'Y2EtZGF0YQ=='
    assert info.token == 'tkn'
    assert info.default_namespace is None


def test_merged_kubeconfigs_prefer_the_first_definitions(tmp_path, mocker):
    kubeconfig1 = tmp_path / 'config1'
    kubeconfig2 = tmp_path / 'config2'
    kubeconfig1.write_text(MINICONFIG)
    kubeconfig2.write_text(FULLCONFIG)
    mocker.patch.dict(os.environ, clear=True,
                      KUBECONFIG=os.pathsep.join([str(kubeconfig1), str(kubeconfig2)]))
    info = login_with_kubeconfig()
    assert info is not None
    assert info.server == 'https://localhost:6443'
    assert info.token is None  # from the 1st file's user, not from the 2nd.
    assert info.default_namespace is None


def test_login_prefers_the_service_account(mocker):
    sa_info = mocker.sentinel.sa_info
    mocker.patch('kubetether._core.intents.piggybacking.has_service_account', return_value=True)
    mocker.patch('kubetether._core.intents.piggybacking.login_with_service_account',
                 return_value=sa_info)
    kc_mock = mocker.patch('kubetether._core.intents.piggybacking.login_with_kubeconfig')
    assert login() is sa_info
    assert not kc_mock.called


def test_login_prefers_the_explicit_kubeconfig(mocker):
    kc_info = mocker.sentinel.kc_info
    mocker.patch('kubetether._core.intents.piggybacking.has_service_account', return_value=True)
    sa_mock = mocker.patch('kubetether._core.intents.piggybacking.login_with_service_account')
    kc_mock = mocker.patch('kubetether._core.intents.piggybacking.login_with_kubeconfig',
                           return_value=kc_info)
    assert login(kubeconfig='/x', context='ctx') is kc_info
    assert not sa_mock.called
    assert kc_mock.call_args_list[0][1] == dict(path='/x', context='ctx')


def test_login_fails_without_credentials(mocker):
    mocker.patch('kubetether._core.intents.piggybacking.has_service_account', return_value=False)
    mocker.patch('kubetether._core.intents.piggybacking.login_with_kubeconfig', return_value=None)
    with pytest.raises(LoginError, match=r"Cannot find the credentials"):
        login()
