# SPDX-License-Identifier: GPL-3.0-or-later
#
# Copyright (C) 2022  Povilas Kanapickas <povilas@radix.lt>
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""Tests for sysroot_deps.download."""

import shlex
import shutil
import subprocess
from unittest.mock import call, patch

import pytest

from sysroot_deps import build, download


class TestPrepareDependency:
    def test_clones_missing_repository(self, tmp_path):
        with patch('sysroot_deps.download.sh') as sh:
            repo_path = download.prepare_dependency(
                str(tmp_path), 'jimtcl', 'https://github.com/msteveb/jimtcl', '0.83')

        assert repo_path == str(tmp_path / 'jimtcl')
        assert sh.call_args_list == [
            call(['git', 'clone', 'https://github.com/msteveb/jimtcl', repo_path],
                 cwd=str(tmp_path)),
            call(['git', 'checkout', '-f', '0.83'], cwd=repo_path),
        ]

    def test_existing_repository_is_only_checked_out(self, tmp_path):
        (tmp_path / 'hidapi').mkdir()

        with patch('sysroot_deps.download.sh') as sh:
            download.prepare_dependency(
                str(tmp_path), 'hidapi', 'https://github.com/libusb/hidapi', 'hidapi-0.14.0')

        sh.assert_called_once_with(['git', 'checkout', '-f', 'hidapi-0.14.0'],
                                   cwd=str(tmp_path / 'hidapi'))


class TestMain:
    def test_fetches_every_dependency(self, tmp_path):
        env_file = tmp_path / 'sources.env'

        with patch('sysroot_deps.download.sh') as sh:
            download.main(['-j', '3', '--root', str(tmp_path / 'src'),
                           '--env-file', str(env_file)])

        clones = [c.args[0] for c in sh.call_args_list if c.args[0][1] == 'clone']
        assert len(clones) == len(download.known_dependencies)

        lines = env_file.read_text().splitlines()
        assert lines[0] == f'export LIBUSB1_SRC={shlex.quote(str(tmp_path / "src" / "libusb1"))}'
        assert len(lines) == len(download.known_dependencies)

    def test_covers_every_build_step(self):
        assert [name for name, _, _ in download.known_dependencies] == \
            [name for name, _ in build.known_dependencies]

    @pytest.mark.skipif(shutil.which('bash') is None, reason='needs bash')
    def test_env_file_survives_spaces_when_sourced(self, tmp_path):
        root = tmp_path / 'my src'
        env_file = tmp_path / 'sources.env'

        with patch('sysroot_deps.download.sh'):
            download.main(['--root', str(root), '--env-file', str(env_file)])

        result = subprocess.run(
            ['bash', '-c', 'source "$1" && echo "$LIBUSB1_SRC" && echo "$JIMTCL_SRC"',
             'bash', str(env_file)],
            capture_output=True, text=True, check=True)
        assert result.stdout.splitlines() == [str(root / 'libusb1'), str(root / 'jimtcl')]
        assert result.stderr == ''
