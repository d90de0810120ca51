#!/usr/bin/env python3
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


import argparse
from concurrent import futures
import os
import shlex

from sysroot_deps.build import sh


known_dependencies = [
    ('libusb1', 'https://github.com/libusb/libusb', 'v1.0.27'),
    ('hidapi', 'https://github.com/libusb/hidapi', 'hidapi-0.14.0'),
    ('libftdi', 'git://developer.intra2net.com/libftdi', 'v1.5'),
    ('capstone', 'https://github.com/capstone-engine/capstone', '5.0.1'),
    ('libjaylink', 'https://gitlab.zapb.de/libjaylink/libjaylink.git', '0.3.1'),
    ('jimtcl', 'https://github.com/msteveb/jimtcl', '0.83'),
]


def prepare_dependency(root_path, name, remote, commit):
    repo_path = os.path.join(root_path, name)

    if os.path.isdir(repo_path):
        print(f'Not downloading already existing repository {name}')
    else:
        sh(['git', 'clone', remote, repo_path], cwd=root_path)

    sh(['git', 'checkout', '-f', commit], cwd=repo_path)
    return repo_path


def write_env_file(path, repo_paths):
    with open(path, 'w') as f:
        for name, repo_path in repo_paths:
            f.write(f'export {name.upper()}_SRC={shlex.quote(repo_path)}\n')


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Fetch sources of the native dependencies')
    parser.add_argument('-j', default=1, type=int,
                        help='The number of tasks to run in parallel')
    parser.add_argument('--root', type=str, default=None,
                        help='Directory to clone into. Defaults to the current directory')
    parser.add_argument('--env-file', type=str, default=None,
                        help='Write <NAME>_SRC exports for build-deps into this file')
    args = parser.parse_args(argv)

    root_path = os.path.abspath(args.root or os.getcwd())
    os.makedirs(root_path, exist_ok=True)

    num_jobs = args.j

    with futures.ThreadPoolExecutor(max_workers=num_jobs) as executor:
        futures_list = [
            executor.submit(prepare_dependency, root_path, name, remote, commit)
            for name, remote, commit in known_dependencies
        ]

        repo_paths = [f.result() for f in futures_list]

    if args.env_file is not None:
        write_env_file(args.env_file,
                       zip([name for name, _, _ in known_dependencies], repo_paths))


if __name__ == '__main__':
    main()
