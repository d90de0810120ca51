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
import enum
import glob
import os
import platform
import shlex
import shutil
import subprocess
import sys

import attr


class TargetPlatform(enum.Enum):
    WINDOWS = 1
    LINUX = 2
    DARWIN = 3


STATIC_RUNTIME_FLAGS = '-static-libgcc -static-libstdc++'

DARWIN_FRAMEWORK_FLAGS = ('-framework CoreFoundation -framework IOKit '
                          '-framework Security -framework AppKit')

default_configs = {
    'libusb1': '--enable-static --disable-shared',
    'hidapi': '--enable-static --disable-shared '
              'HIDAPI_BUILD_HIDTEST=FALSE HIDAPI_WITH_TESTS=FALSE',
    'libftdi': '-DSTATICLIBS=ON -DBUILD_SHARED_LIBS=OFF -DEXAMPLES=OFF -DFTDI_EEPROM=OFF',
    'capstone': 'CAPSTONE_BUILD_CORE_ONLY=yes CAPSTONE_STATIC=yes CAPSTONE_SHARED=no',
    'libjaylink': '--enable-static --disable-shared',
    'jimtcl': '--with-ext=json --minimal --disable-ssl',
}

# Linux targets link against shared system libraries such as libudev
linux_shared_configs = {
    'libusb1': '--enable-shared --disable-static',
    'hidapi': '--enable-shared --disable-static',
    'libftdi': '-DSTATICLIBS=OFF -DBUILD_SHARED_LIBS=ON -DEXAMPLES=OFF -DFTDI_EEPROM=OFF',
    'libjaylink': '--enable-shared --disable-static',
}


@attr.s
class Toolchain:
    cc = attr.ib(default=None)
    cxx = attr.ib(default=None)
    ar = attr.ib(default=None)
    strip = attr.ib(default=None)
    cflags = attr.ib(default=None)
    cxxflags = attr.ib(default=None)
    ldflags = attr.ib(default=None)
    host_flag = attr.ib(factory=list)

    @classmethod
    def for_host(cls, host, **kwargs):
        return cls(cc=f'{host}-gcc', cxx=f'{host}-g++', ar=f'{host}-ar',
                   strip=f'{host}-strip', host_flag=[f'--host={host}'], **kwargs)

    def apply(self, env):
        """Exports the toolchain into `env`. Unset fields leave the inherited value alone."""
        exported = {
            'CC': self.cc,
            'CXX': self.cxx,
            'AR': self.ar,
            'STRIP': self.strip,
            'CFLAGS': self.cflags,
            'CXXFLAGS': self.cxxflags,
            'LDFLAGS': self.ldflags,
        }
        for key, value in exported.items():
            if value is not None:
                env[key] = value
        return env


@attr.s
class Settings:
    sysroot = attr.ib(converter=str)
    parallel = attr.ib(converter=int)
    target_platform = attr.ib()
    host = attr.ib(converter=str)
    toolchain = attr.ib()
    configs = attr.ib(factory=dict)
    env = attr.ib(factory=dict)

    @property
    def usr(self):
        return os.path.join(self.sysroot, 'usr')

    @property
    def include_dir(self):
        return os.path.join(self.usr, 'include')

    @property
    def lib_dir(self):
        return os.path.join(self.usr, 'lib')

    @property
    def pkgconfig_dir(self):
        return os.path.join(self.lib_dir, 'pkgconfig')

    @property
    def bin_dir(self):
        return os.path.join(self.usr, 'bin')

    def config_args(self, name):
        return shlex.split(self.configs[name])


def sh(cmd, cwd, env=None):
    print(f'DBG: Executing {cmd}')
    code = subprocess.call(cmd, cwd=cwd, env=env)
    if code != 0:
        print(f'ERROR: Command \'{cmd}\' returned code {code}')
        sys.exit(code)
    return code


def try_sh(cmd, cwd, env=None):
    # Same as sh(), but the caller decides what a failure means
    print(f'DBG: Executing {cmd}')
    return subprocess.call(cmd, cwd=cwd, env=env)


def sh_with_cwd(cwd, env=None):
    def sh_wrapper(cmd):
        return sh(cmd, cwd, env=env)
    return sh_wrapper


def configs_from_env(environ):
    return {
        name: environ.get(f'{name.upper()}_CONFIG') or default
        for name, default in default_configs.items()
    }


def is_native_host(host, machine):
    # Compare the whole architecture component, a substring match would let
    # e.g. 'x86' match an 'x86_64' machine
    return host.split('-', 1)[0] == machine


def resolve_toolchain(target_platform, host, machine=None):
    if machine is None:
        machine = platform.machine()

    if target_platform == TargetPlatform.WINDOWS:
        toolchain = Toolchain.for_host(host,
                                       cflags=STATIC_RUNTIME_FLAGS,
                                       cxxflags=STATIC_RUNTIME_FLAGS,
                                       ldflags=STATIC_RUNTIME_FLAGS)
        return toolchain, {}

    if target_platform == TargetPlatform.LINUX:
        if is_native_host(host, machine):
            toolchain = Toolchain(cflags='', cxxflags='', ldflags='')
        else:
            toolchain = Toolchain.for_host(host, cflags='', cxxflags='', ldflags='')
        return toolchain, dict(linux_shared_configs)

    if target_platform == TargetPlatform.DARWIN:
        arch_flags = '-arch arm64' if 'arm64' in host else '-arch x86_64'
        toolchain = Toolchain(cflags=arch_flags,
                              cxxflags=arch_flags,
                              ldflags=f'{arch_flags} {DARWIN_FRAMEWORK_FLAGS}')
        return toolchain, {}

    return Toolchain(), {}


def make_settings(target_platform, host, sysroot, parallel, environ=None):
    if environ is None:
        environ = os.environ

    toolchain, overrides = resolve_toolchain(target_platform, host)

    configs = configs_from_env(environ)
    configs.update(overrides)

    settings = Settings(
        sysroot=sysroot,
        parallel=parallel,
        target_platform=target_platform,
        host=host,
        toolchain=toolchain,
        configs=configs,
    )
    env = toolchain.apply(dict(environ))
    env['PKG_CONFIG_PATH'] = settings.pkgconfig_dir
    settings.env = env
    return settings


def sysroot_search_env(settings, extra_cppflags=''):
    # Lets later libraries find what earlier ones installed into the sysroot
    env = dict(settings.env)
    cppflags = f'-I{settings.include_dir} -I{settings.include_dir}/libusb-1.0'
    if extra_cppflags:
        cppflags += f' {extra_cppflags}'
    env['CPPFLAGS'] = cppflags
    env['LDFLAGS'] = f'{env.get("LDFLAGS", "")} -L{settings.lib_dir}'.lstrip()
    env['PKG_CONFIG_PATH'] = settings.pkgconfig_dir
    return env


def remove_libtool_archives(settings):
    for path in glob.glob(os.path.join(settings.lib_dir, '*.la')):
        os.remove(path)


def configure_args(srcdir, settings, name):
    return ([os.path.join(srcdir, 'configure'), '--prefix=/usr']
            + settings.toolchain.host_flag + settings.config_args(name))


def make_install_args(settings):
    return ['make', 'install', f'DESTDIR={settings.sysroot}']


def build_libusb1(srcdir, builddir, settings):
    bsh = sh_with_cwd(builddir, env=settings.env)
    bsh(configure_args(srcdir, settings, 'libusb1'))
    bsh(['make', '-j', str(settings.parallel)])
    bsh(make_install_args(settings))
    remove_libtool_archives(settings)


def build_hidapi(srcdir, builddir, settings):
    env = sysroot_search_env(settings)
    bsh = sh_with_cwd(builddir, env=env)
    bsh(configure_args(srcdir, settings, 'hidapi'))

    # Older hidapi releases have no 'libs' target
    if try_sh(['make', '-j', str(settings.parallel), 'libs'], builddir, env=env) != 0:
        bsh(['make', '-j', str(settings.parallel)])

    bsh(make_install_args(settings))
    remove_libtool_archives(settings)


def build_libftdi(srcdir, builddir, settings):
    libusb_include = os.path.join(settings.include_dir, 'libusb-1.0')
    libusb_library = os.path.join(settings.lib_dir, 'libusb-1.0.a')

    env = dict(settings.env)
    env['PKG_CONFIG_LIBDIR'] = settings.pkgconfig_dir
    env['LIBUSB_1_INCLUDE_DIRS'] = libusb_include
    env['LIBUSB_1_LIBRARIES'] = libusb_library

    bsh = sh_with_cwd(builddir, env=env)
    bsh([
        'cmake',
        srcdir,
        '-DCMAKE_INSTALL_PREFIX=/usr',
        '-DCMAKE_POLICY_VERSION_MINIMUM=3.5',
        f'-DLIBUSB_INCLUDE_DIR={libusb_include}',
        f'-DLIBUSB_LIBRARIES={libusb_library}',
        f'-DLIBUSB_1_INCLUDE_DIRS={libusb_include}',
        f'-DLIBUSB_1_LIBRARIES={libusb_library}',
        ] + settings.config_args('libftdi')
    )
    bsh(['make', '-j', str(settings.parallel)])
    bsh(make_install_args(settings))


def build_capstone(srcdir, builddir, settings):
    # Capstone's plain Makefile only builds in-tree
    shutil.copytree(srcdir, builddir, symlinks=True, dirs_exist_ok=True)

    env = dict(settings.env)
    if settings.target_platform == TargetPlatform.WINDOWS:
        env['CROSS'] = f'{settings.host}-'

    config = settings.config_args('capstone')
    bsh = sh_with_cwd(builddir, env=env)
    bsh(['make', '-j', str(settings.parallel)] + config)
    bsh(make_install_args(settings) + ['PREFIX=/usr'] + config)


def build_libjaylink(srcdir, builddir, settings):
    env = sysroot_search_env(settings, extra_cppflags=settings.env.get('CFLAGS', ''))
    bsh = sh_with_cwd(builddir, env=env)
    bsh(configure_args(srcdir, settings, 'libjaylink'))
    bsh(['make', '-j', str(settings.parallel)])
    bsh(make_install_args(settings))
    remove_libtool_archives(settings)


def copy_if_exists(patterns, destdir):
    for pattern in patterns:
        for path in glob.glob(pattern):
            if os.path.isfile(path):
                shutil.copy(path, destdir)


def install_jimtcl_manually(srcdir, builddir, settings):
    for path in [settings.lib_dir, settings.include_dir, settings.bin_dir]:
        os.makedirs(path, exist_ok=True)

    copy_if_exists([os.path.join(builddir, 'libjim.a')], settings.lib_dir)
    copy_if_exists([os.path.join(srcdir, 'jim*.h'),
                    os.path.join(builddir, 'jim-config.h')], settings.include_dir)
    copy_if_exists([os.path.join(builddir, 'jimsh*')], settings.bin_dir)


def build_jimtcl(srcdir, builddir, settings):
    bsh = sh_with_cwd(builddir, env=settings.env)
    bsh(configure_args(srcdir, settings, 'jimtcl'))
    bsh(['make', '-j', str(settings.parallel)])

    # The install target depends on build-jim-ext which is missing from some trees
    if try_sh(make_install_args(settings), builddir, env=settings.env) != 0:
        print('WARNING: jimtcl install failed, trying manual installation...')
        install_jimtcl_manually(srcdir, builddir, settings)


known_dependencies = [
    ('libusb1', build_libusb1),
    ('hidapi', build_hidapi),
    ('libftdi', build_libftdi),
    ('capstone', build_capstone),
    ('libjaylink', build_libjaylink),
    ('jimtcl', build_jimtcl),
]

# libftdi clashes with libusb symbols when linked statically on Windows
unsupported_platforms = {
    'libftdi': [TargetPlatform.WINDOWS],
}


def source_dir_for(name, environ):
    srcdir = environ.get(f'{name.upper()}_SRC')
    if not srcdir or not os.path.isdir(srcdir):
        return None
    return os.path.abspath(srcdir)


def build_dependencies(build_deps, builddir_root, settings, environ=None):
    if environ is None:
        environ = os.environ

    os.makedirs(settings.usr, exist_ok=True)

    for name, fn in build_deps:
        if settings.target_platform in unsupported_platforms.get(name, []):
            print(f'DBG: Skipping {name}, not supported on {settings.target_platform.name.lower()}')
            continue

        srcdir = source_dir_for(name, environ)
        if srcdir is None:
            print(f'DBG: Skipping {name}, {name.upper()}_SRC is not a directory')
            continue

        builddir = os.path.abspath(os.path.join(builddir_root, name))
        print(f'Building {name} in {builddir}')

        os.makedirs(builddir, exist_ok=True)
        fn(srcdir, builddir, settings)


def parse_platform(platform_arg):
    arg_to_target_platform = {
        'windows': TargetPlatform.WINDOWS,
        'linux': TargetPlatform.LINUX,
        'darwin': TargetPlatform.DARWIN,
    }
    if platform_arg not in arg_to_target_platform:
        print(f'DBG: Unknown platform {platform_arg}, using default configuration')
        return None
    return arg_to_target_platform[platform_arg]


def parse_dependencies(dependencies_arg):
    if dependencies_arg is None:
        return known_dependencies

    known_dependency_names = [name for name, _ in known_dependencies]
    requested = dependencies_arg.split(',')
    for d in requested:
        if d not in known_dependency_names:
            print(f'ERROR: Unknown dependency {d}')
            sys.exit(1)
    return [(name, fn) for name, fn in known_dependencies if name in requested]


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Build native dependencies into a sysroot')
    parser.add_argument('platform', type=str,
                        help='Target platform: windows, linux or darwin')
    parser.add_argument('host', type=str,
                        help='Host triplet, e.g. x86_64-w64-mingw32')
    parser.add_argument('--sysroot', type=str, default=None,
                        help='Staging root. Defaults to $SYSROOT or ./sysroot')
    parser.add_argument('--builddir', type=str, default=None,
                        help='Directory for per-library build directories. '
                        'Defaults to the current directory')
    parser.add_argument('--parallel', type=int, default=None,
                        help='Parallelism to use. Defaults to $MAKE_JOBS or 2')
    parser.add_argument('--dependencies', default=None, type=str,
                        help='Comma-separated list of dependencies to build')

    args = parser.parse_args(argv)

    environ = os.environ
    sysroot = args.sysroot or environ.get('SYSROOT') or os.path.join(os.getcwd(), 'sysroot')
    parallel = args.parallel if args.parallel is not None else environ.get('MAKE_JOBS') or 2
    builddir_root = args.builddir or os.getcwd()

    build_deps = parse_dependencies(args.dependencies)
    target_platform = parse_platform(args.platform)

    settings = make_settings(target_platform, args.host, os.path.abspath(sysroot),
                             parallel, environ=environ)

    print(f'Building dependencies for {args.platform} ({args.host})')
    build_dependencies(build_deps, builddir_root, settings, environ=environ)
    print(f'Dependencies built successfully in {settings.sysroot}')


if __name__ == '__main__':
    main()
