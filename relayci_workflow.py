# relayci_workflow.py
# Build/test on every branch; deploy to dev from develop and to production from master.
from __future__ import annotations

from relayci import cache_key, job, only, restore_cache, save_cache, sh, wf

CARGO_CACHE = cache_key("v1-cargo-cache", "Cargo.lock")
CARGO_CACHE_PATHS = [
    "/usr/local/cargo/registry",
    "target/debug/.fingerprint",
    "target/debug/build",
    "target/debug/deps",
]


def build_steps():
    return [
        sh("Version information", "rustc --version; cargo --version; rustup --version"),
        sh("Calculate dependencies", "cargo generate-lockfile"),
        restore_cache(CARGO_CACHE),
        sh("Build all targets", "cargo build --all --all-targets"),
        save_cache(CARGO_CACHE, CARGO_CACHE_PATHS),
    ]


def workflow():
    return wf(
        job(
            "test",
            sh("Install cargo clippy", "rustup component add clippy"),
            *build_steps(),
            sh("Run cargo clippy", "cargo clippy", best_effort=True),
            sh("Run all tests", "cargo test --all"),
        ),
        job(
            "deploy-dev",
            *build_steps(),
            sh("Deploy to dev", 'echo "deploying $RELAYCI_COMMIT to dev"'),
            needs=["test"],
            branches=only("develop"),
        ),
        job(
            "deploy-master",
            *build_steps(),
            sh("Deploy to production", 'echo "deploying $RELAYCI_COMMIT to production"'),
            needs=["test"],
            branches=only("master"),
        ),
    )
