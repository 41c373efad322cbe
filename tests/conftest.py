from __future__ import annotations

import os

import pytest

TRAVIS_MATRIX = """\
---
matrix:
  include:
    -
      language: rust
      script:
        - cargo build --verbose --all
        - cargo test --verbose --all -- --test-threads=1
    -
      os: osx
      language: swift
      osx_image: xcode11.2
      env:
        - PATH=$PATH:/Users/travis/.cargo/bin:/Users/travis/.rustup
      before_script:
        - "bash <(curl https://sh.rustup.rs -sSf) -y"
        - "rustup target add aarch64-apple-ios x86_64-apple-ios"
        - "cargo install cargo-lipo cbindgen"
        - "cd tools && sh ios-example-build.sh"
        - "cd ../examples/iOSExample"
      xcode_workspace: iOSExample.xcworkspace
      xcode_scheme: iOSExample
      xcode_destination: platform=iOS Simulator,OS=13.2,name=iPhone 11 Pro
      script:
        - xcodebuild -workspace iOSExample.xcworkspace -scheme iOSExample build
"""


@pytest.fixture()
def travis_matrix() -> str:
    return TRAVIS_MATRIX


@pytest.fixture()
def base_env() -> dict[str, str]:
    """A fixed external environment: enough PATH to find sh/bash/sleep."""
    return {"PATH": os.environ.get("PATH", "/usr/bin:/bin"), "HOME": "/home/ci"}
