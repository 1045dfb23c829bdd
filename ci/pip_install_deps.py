import sys
import subprocess
import shlex
import argparse

arg_parser = argparse.ArgumentParser(
    prog='pip_install_deps.py',
    description='installs dependencies'
)

arg_parser.add_argument('--questdb-version')


class UnsupportedDependency(Exception):
    pass


def pip_install(package, version=None):
    args = [
        sys.executable,
        '-m', 'pip', 'install',
        '--upgrade',
        '--only-binary', ':all:',
        package if version is None else f'{package}=={version}'
    ]
    args_s = ' '.join(shlex.quote(arg) for arg in args)
    sys.stderr.write(args_s + '\n')
    res = subprocess.run(
        args,
        stderr=subprocess.STDOUT,
        stdout=subprocess.PIPE)
    if res.returncode == 0:
        return
    output = res.stdout.decode('utf-8')
    is_unsupported = (
            ('Could not find a version that satisfies the requirement' in output) or
            ('The conflict is caused by' in output))
    if is_unsupported:
        raise UnsupportedDependency(output)
    else:
        sys.stderr.write(output + '\n')
        sys.exit(res.returncode)


def main(args):
    pip_install('pip')
    pip_install('setuptools')
    pip_install('questdb', args.questdb_version or None)
    pip_install('psutil')

    # Ensure that we've managed to install the expected dependencies.
    import questdb.ingress
    import psutil


if __name__ == "__main__":
    args = arg_parser.parse_args()
    main(args)
