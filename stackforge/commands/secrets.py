"""Stackforge CLI - Secrets commands"""

from pathlib import Path
from typing import Optional, Sequence

import click

from stackforge.base import BaseCommand
from stackforge.constants import DEFAULT_KEY_TYPE, DEFAULT_PROFILE, DEFAULT_RSA_KEY_SIZE, KEY_TYPES
from stackforge.core.cryptor import SecretStore


class SecretsCommand(BaseCommand):
    """Base for commands operating on a profile's secret store."""

    def __init__(
        self,
        profile: str = DEFAULT_PROFILE,
        stacks_dir: Optional[str] = None,
        verbose: bool = False,
        project_root: Optional[Path] = None,
    ):
        super().__init__(verbose=verbose, project_root=project_root)
        self.profile = profile
        self.stacks_dir = stacks_dir

    def store(self) -> SecretStore:
        stacks_dir = None
        if self.stacks_dir:
            stacks_dir = Path(self.stacks_dir)
            if not stacks_dir.is_absolute():
                stacks_dir = self.project_root / stacks_dir
        return SecretStore(self.project_root, self.profile, stacks_dir, logger=self.logger)


class InitProfileCommand(SecretsCommand):
    """Generate a profile with a new key pair."""

    def __init__(
        self,
        project: Optional[str] = None,
        key_size: int = DEFAULT_RSA_KEY_SIZE,
        key_type: str = DEFAULT_KEY_TYPE,
        force: bool = False,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.project = project
        self.key_size = key_size
        self.key_type = key_type
        self.force = force

    def execute(self) -> None:
        self.show_header(title="Initialize Profile", profile=self.profile)
        logger = self.init_logger("init-profile")

        logger.step(f"Generating {self.key_type} key pair")
        profile = self.store().generate_profile(
            self.project or self.project_root.name,
            key_size=self.key_size,
            key_type=self.key_type,
            overwrite=self.force,
        )
        logger.success(f"Profile written to {profile.config_path}")
        self.print_dim(f"Public key fingerprint: {profile.fingerprint}")


class EncryptCommand(SecretsCommand):
    """Encrypt plaintext secrets of every stack."""

    def __init__(self, recipients: Sequence[str] = (), **kwargs):
        super().__init__(**kwargs)
        self.recipients = tuple(recipients)

    def execute(self) -> None:
        self.show_header(title="Encrypt Secrets", profile=self.profile)
        logger = self.init_logger("encrypt")

        logger.step("Encrypting secrets")
        written = self.store().encrypt_secret_files(extra_recipients=self.recipients)
        if not written:
            logger.warning("No secrets.yaml files found")
            return
        logger.success(f"Encrypted {len(written)} bundle(s)")


class RecipientCommand(SecretsCommand):
    """Grant or revoke a public key's access to every bundle."""

    def __init__(self, public_key: str, remove: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.public_key = public_key
        self.remove = remove

    def execute(self) -> None:
        action = "Remove" if self.remove else "Add"
        self.show_header(title=f"{action} Recipient", profile=self.profile)
        logger = self.init_logger("recipients")

        key = self.public_key
        if not key.strip().startswith("ssh-"):
            key = Path(key).expanduser().read_text()

        store = self.store()
        logger.step("Removing recipient" if self.remove else "Adding recipient")
        if self.remove:
            updated = store.remove_recipient(key)
        else:
            updated = store.add_recipient(key)
        logger.success(f"Updated {len(updated)} bundle(s)")


@click.group()
def secrets():
    """Manage profiles and encrypted secret bundles"""


@secrets.command("init-profile")
@click.argument("profile")
@click.option("--project", help="Project name (defaults to the workspace directory name)")
@click.option("--key-size", type=int, default=DEFAULT_RSA_KEY_SIZE, show_default=True, help="RSA key size")
@click.option(
    "--key-type",
    type=click.Choice(KEY_TYPES),
    default=DEFAULT_KEY_TYPE,
    show_default=True,
    help="Key pair type",
)
@click.option("--force", is_flag=True, help="Overwrite an existing profile")
@click.option("--verbose", "-v", is_flag=True, help="Show all output")
def init_profile(profile, project, key_size, key_type, force, verbose):
    """
    Create a profile with a freshly generated key pair

    Examples:
        stackforge secrets init-profile default --project demo
        stackforge secrets init-profile ci --key-type ed25519
    """
    InitProfileCommand(
        project=project,
        key_size=key_size,
        key_type=key_type,
        force=force,
        profile=profile,
        verbose=verbose,
    ).run()


@secrets.command("encrypt")
@click.option("--profile", "-p", default=DEFAULT_PROFILE, show_default=True, help="Profile to use")
@click.option("--stacks-dir", help="Stacks root (defaults to .sc/stacks)")
@click.option("--recipient", "recipients", multiple=True, help="Extra public key allowed to decrypt")
@click.option("--verbose", "-v", is_flag=True, help="Show all output")
def encrypt(profile, stacks_dir, recipients, verbose):
    """
    Encrypt every stack's secrets.yaml into secrets.encrypted.yaml

    Examples:
        stackforge secrets encrypt
        stackforge secrets encrypt --recipient "ssh-rsa AAAA..."
    """
    EncryptCommand(
        recipients=recipients,
        profile=profile,
        stacks_dir=stacks_dir,
        verbose=verbose,
    ).run()


@secrets.command("add-recipient")
@click.argument("public_key")
@click.option("--profile", "-p", default=DEFAULT_PROFILE, show_default=True, help="Profile to use")
@click.option("--stacks-dir", help="Stacks root (defaults to .sc/stacks)")
@click.option("--verbose", "-v", is_flag=True, help="Show all output")
def add_recipient(public_key, profile, stacks_dir, verbose):
    """Grant a public key (inline or a .pub file) access to every bundle"""
    RecipientCommand(
        public_key=public_key,
        profile=profile,
        stacks_dir=stacks_dir,
        verbose=verbose,
    ).run()


@secrets.command("remove-recipient")
@click.argument("public_key")
@click.option("--profile", "-p", default=DEFAULT_PROFILE, show_default=True, help="Profile to use")
@click.option("--stacks-dir", help="Stacks root (defaults to .sc/stacks)")
@click.option("--verbose", "-v", is_flag=True, help="Show all output")
def remove_recipient(public_key, profile, stacks_dir, verbose):
    """Revoke a public key's access to every bundle"""
    RecipientCommand(
        public_key=public_key,
        remove=True,
        profile=profile,
        stacks_dir=stacks_dir,
        verbose=verbose,
    ).run()
