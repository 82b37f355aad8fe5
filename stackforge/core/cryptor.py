"""
Secret store: profile key material and encrypted per-stack secret bundles.
"""

import threading
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

import yaml

from stackforge.constants import (
    DEFAULT_KEY_TYPE,
    DEFAULT_RSA_KEY_SIZE,
    ENCRYPTED_SECRETS_FILE,
    PLAINTEXT_SECRETS_FILE,
)
from stackforge.core import ciphers
from stackforge.exceptions import (
    AlreadyInitialized,
    CredentialError,
    DecryptionError,
    KeyLoadError,
    ParseError,
    ProfileNotFound,
)
from stackforge.logger import RunLogger, null_logger
from stackforge.models.secrets import Profile, SecretBundle
from stackforge.utils import WorkspaceUtils, resolve_path

_EMPTY: Mapping[str, SecretBundle] = MappingProxyType({})


class SecretStore:
    """
    Loads the profile key pair and decrypts secret bundles with it.

    Decrypted values are only ever held in memory. Loading is all-or-nothing:
    either every bundle under the stacks root decrypts, or none is observable.
    """

    def __init__(
        self,
        workdir: Path,
        profile: str,
        stacks_dir: Optional[Path] = None,
        logger: Optional[RunLogger] = None,
    ):
        """
        Initialize the secret store.

        Args:
            workdir: Workspace root holding the .sc directory
            profile: Profile name (selects .sc/cfg.<profile>.yaml)
            stacks_dir: Stacks root (defaults to .sc/stacks)
            logger: Logger for lifecycle events
        """
        self.workdir = Path(workdir)
        self.profile_name = profile
        self.stacks_dir = Path(stacks_dir) if stacks_dir else WorkspaceUtils.default_stacks_dir(self.workdir)
        self.logger = logger or null_logger()
        self._profile: Optional[Profile] = None
        self._secrets: Optional[Mapping[str, SecretBundle]] = None
        self._lock = threading.Lock()

    @property
    def profile_path(self) -> Path:
        return WorkspaceUtils.profile_path(self.workdir, self.profile_name)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def read_profile_config(self) -> Profile:
        """
        Load the profile configuration and its key pair.

        Returns:
            Immutable Profile, cached after the first successful load

        Raises:
            ProfileNotFound: If the profile file does not exist
            ParseError: If the profile file is malformed
            KeyLoadError: If key material is missing, unreadable or inconsistent
        """
        with self._lock:
            if self._profile is not None:
                return self._profile

            path = self.profile_path
            if not path.exists():
                raise ProfileNotFound(self.profile_name, str(path))

            config = self._load_yaml(path)
            if not isinstance(config, dict):
                raise ParseError(str(path), "Profile configuration must be a mapping")

            private_pem, key_reference = self._read_key_material(
                config, "privateKey", "privateKeyPath", required=True
            )
            passphrase = config.get("privateKeyPassword")
            if passphrase is not None and not isinstance(passphrase, str):
                raise ParseError(str(path), "privateKeyPassword must be a string")
            private_key = ciphers.load_private_key(private_pem, passphrase)

            derived_public = ciphers.public_key_to_ssh(private_key.public_key())
            configured_public, _ = self._read_key_material(config, "publicKey", "publicKeyPath")
            if configured_public:
                ciphers.parse_public_key(configured_public)
                if ciphers.trim_public_key(configured_public) != ciphers.trim_public_key(derived_public):
                    raise KeyLoadError(
                        "Public key does not match the private key",
                        context=f"Profile: {path}",
                    )

            credentials = config.get("credentials") or {}
            if not isinstance(credentials, dict):
                raise ParseError(str(path), "credentials must be a mapping")

            project_name = config.get("projectName") or self.workdir.name
            if not isinstance(project_name, str):
                raise ParseError(str(path), "projectName must be a string")

            self._profile = Profile(
                name=self.profile_name,
                project_name=project_name,
                public_key=ciphers.trim_public_key(derived_public),
                private_key=private_key,
                key_reference=key_reference,
                credentials=credentials,
                config_path=path,
            )
            return self._profile

    def _read_key_material(self, config: dict, inline_field: str, path_field: str, required: bool = False):
        """Read a key given inline or by path; configuring both is an error."""
        inline = config.get(inline_field)
        key_path = config.get(path_field)

        if inline and key_path:
            raise KeyLoadError(
                f"Both {inline_field} and {path_field} are configured",
                context=f"Profile: {self.profile_path}",
            )
        if inline:
            if not isinstance(inline, str):
                raise KeyLoadError(f"{inline_field} must be a string")
            return inline, "inline"
        if key_path:
            resolved = resolve_path(self.workdir, str(key_path))
            try:
                return resolved.read_text(encoding="utf-8"), str(resolved)
            except (OSError, UnicodeDecodeError) as e:
                raise KeyLoadError(f"Cannot read {path_field}: {resolved}", context=str(e)) from e
        if required:
            raise KeyLoadError(
                "No private key configured",
                context=f"Set {inline_field} or {path_field} in {self.profile_path}",
            )
        return None, None

    def generate_profile(
        self,
        project_name: str,
        key_size: int = DEFAULT_RSA_KEY_SIZE,
        overwrite: bool = False,
        passphrase: Optional[str] = None,
        key_type: str = DEFAULT_KEY_TYPE,
    ) -> Profile:
        """
        Create a profile file with a freshly generated RSA or Ed25519 key pair.

        Raises:
            AlreadyInitialized: If the profile exists and overwrite is False
            KeyLoadError: If the key type is unsupported
        """
        path = self.profile_path
        if path.exists() and not overwrite:
            raise AlreadyInitialized(
                f"Profile '{self.profile_name}' already exists",
                context=f"Path: {path}",
            )

        private_key = ciphers.generate_private_key(key_size, key_type)
        config = {
            "projectName": project_name,
            "privateKey": ciphers.private_key_to_pem(private_key, passphrase),
            "publicKey": ciphers.public_key_to_ssh(private_key.public_key()),
        }
        if passphrase:
            config["privateKeyPassword"] = passphrase

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)
        path.chmod(0o600)

        self.logger.log(f"Generated profile '{self.profile_name}' at {path}")
        with self._lock:
            self._profile = None
        return self.read_profile_config()

    # ------------------------------------------------------------------
    # Bundles
    # ------------------------------------------------------------------

    def bundle_paths(self) -> List[Path]:
        """Encrypted bundle files under the stacks root, sorted by stack name."""
        return self._stack_files(ENCRYPTED_SECRETS_FILE)

    def _stack_files(self, filename: str) -> List[Path]:
        if not self.stacks_dir.is_dir():
            return []
        found = []
        for stack_dir in sorted(self.stacks_dir.iterdir()):
            if not stack_dir.is_dir() or stack_dir.name.startswith((".", "_")):
                continue
            candidate = stack_dir / filename
            if candidate.is_file():
                found.append(candidate)
        return found

    def _associated_data(self, bundle_path: Path) -> bytes:
        return bundle_path.relative_to(self.stacks_dir).as_posix().encode()

    def _bundle_label(self, bundle_path: Path) -> str:
        try:
            return bundle_path.relative_to(self.stacks_dir).as_posix()
        except ValueError:
            return str(bundle_path)

    def read_secret_files(self) -> Mapping[str, SecretBundle]:
        """
        Decrypt every secret bundle with the profile key.

        Returns:
            Read-only mapping of stack name to SecretBundle (empty when there
            are no bundles)

        Raises:
            DecryptionError: If any bundle cannot be decrypted; nothing is kept
        """
        profile = self.read_profile_config()

        loaded: Dict[str, SecretBundle] = {}
        try:
            for path in self.bundle_paths():
                bundle = self._decrypt_bundle(path, profile)
                loaded[bundle.stack_name] = bundle
        except Exception:
            with self._lock:
                self._secrets = None
            raise

        with self._lock:
            self._secrets = MappingProxyType(loaded)
        self.logger.event("secrets.loaded", bundles=len(loaded), profile=self.profile_name)
        return self._secrets

    def _decrypt_bundle(self, path: Path, profile: Profile) -> SecretBundle:
        label = self._bundle_label(path)
        try:
            envelope = self._load_yaml(path)
        except ParseError as e:
            raise DecryptionError(label, e.reason) from e

        plaintext = ciphers.open_envelope(
            envelope,
            profile.private_key,
            profile.public_key,
            self._associated_data(path),
            label,
        )

        try:
            content = yaml.safe_load(plaintext.decode("utf-8")) or {}
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise DecryptionError(label, "Decrypted content is not valid YAML") from e
        values, auth = self._split_secrets(content)
        if values is None:
            raise DecryptionError(label, "Decrypted content must map 'values' and 'auth'")

        return SecretBundle(stack_name=path.parent.name, path=path, values=values, auth=auth)

    @staticmethod
    def _split_secrets(content: Any):
        if not isinstance(content, dict):
            return None, None
        values = content.get("values") or {}
        auth = content.get("auth") or {}
        if not isinstance(values, dict) or not isinstance(auth, dict):
            return None, None
        return values, auth

    @property
    def is_loaded(self) -> bool:
        return self._secrets is not None

    @property
    def secrets(self) -> Mapping[str, SecretBundle]:
        """Decrypted bundles by stack name (empty until loaded)."""
        return self._secrets if self._secrets is not None else _EMPTY

    def bundle_for(self, stack_name: str) -> SecretBundle:
        """Bundle of a stack, or an empty one if the stack has no secrets."""
        bundle = self.secrets.get(stack_name)
        if bundle is None:
            path = self.stacks_dir / stack_name / ENCRYPTED_SECRETS_FILE
            return SecretBundle(stack_name=stack_name, path=path)
        return bundle

    def lookup(self, stack_name: str, key: str) -> Any:
        """
        Look up one secret value.

        Raises:
            CredentialError: If the stack has no such secret
        """
        bundle = self.bundle_for(stack_name)
        if not bundle.has(key):
            raise CredentialError(
                f"Secret '{key}' not found for stack '{stack_name}'",
                context=f"Bundle: {bundle.path}",
            )
        return bundle.get(key)

    # ------------------------------------------------------------------
    # Encryption and recipients
    # ------------------------------------------------------------------

    def encrypt_secret_files(self, extra_recipients: Iterable[str] = ()) -> List[Path]:
        """
        Encrypt each stack's plaintext secrets.yaml into its bundle.

        The profile key is always a recipient; recipients already present on
        an existing bundle are kept.

        Returns:
            Paths of the bundles written
        """
        profile = self.read_profile_config()
        extra = [ciphers.trim_public_key(key) for key in extra_recipients]
        for key in extra:
            ciphers.parse_public_key(key)

        written = []
        for source in self._stack_files(PLAINTEXT_SECRETS_FILE):
            content = self._load_yaml(source)
            values, auth = self._split_secrets(content)
            if values is None:
                raise ParseError(str(source), "Secrets file must map 'values' and 'auth'")

            target = source.parent / ENCRYPTED_SECRETS_FILE
            recipients = [profile.public_key, *extra]
            if target.exists():
                recipients.extend(ciphers.recipients_of(self._load_yaml(target)))

            plaintext = yaml.safe_dump({"values": values, "auth": auth}, sort_keys=True)
            envelope = ciphers.seal(plaintext.encode(), recipients, self._associated_data(target))
            self._write_envelope(target, envelope)
            written.append(target)
            self.logger.log(f"Encrypted {self._bundle_label(target)}")

        self._invalidate()
        return written

    def add_recipient(self, public_key: str) -> List[Path]:
        """Grant another public key access to every bundle."""
        profile = self.read_profile_config()
        ciphers.parse_public_key(public_key)
        key = ciphers.trim_public_key(public_key)

        updated = []
        for path in self.bundle_paths():
            envelope = self._load_yaml(path)
            recipients = ciphers.recipients_of(envelope)
            if key in recipients:
                continue
            envelope = ciphers.rewrap(
                envelope,
                profile.private_key,
                profile.public_key,
                recipients + [key],
                self._bundle_label(path),
            )
            self._write_envelope(path, envelope)
            updated.append(path)

        self.logger.log(f"Added recipient {ciphers.fingerprint(key)} to {len(updated)} bundle(s)")
        return updated

    def remove_recipient(self, public_key: str) -> List[Path]:
        """
        Revoke a public key from every bundle.

        Bundles are re-sealed with a fresh data key so the removed key cannot
        reuse a previously unwrapped one.
        """
        profile = self.read_profile_config()
        key = ciphers.trim_public_key(public_key)
        if key == profile.public_key:
            raise CredentialError(
                "Cannot remove the profile's own public key",
                context=f"Profile: {self.profile_name}",
            )

        updated = []
        for path in self.bundle_paths():
            envelope = self._load_yaml(path)
            recipients = ciphers.recipients_of(envelope)
            if key not in recipients:
                continue
            aad = self._associated_data(path)
            plaintext = ciphers.open_envelope(
                envelope, profile.private_key, profile.public_key, aad, self._bundle_label(path)
            )
            remaining = [recipient for recipient in recipients if recipient != key]
            self._write_envelope(path, ciphers.seal(plaintext, remaining, aad))
            updated.append(path)

        self.logger.log(f"Removed recipient {ciphers.fingerprint(key)} from {len(updated)} bundle(s)")
        self._invalidate()
        return updated

    def _invalidate(self):
        with self._lock:
            self._secrets = None

    @staticmethod
    def _write_envelope(path: Path, envelope: dict):
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(envelope, f, default_flow_style=False, sort_keys=False)

    @staticmethod
    def _load_yaml(file_path: Path) -> Any:
        """
        Load and parse a YAML file.

        Raises:
            ParseError: If the YAML is invalid or the file unreadable
        """
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ParseError(str(file_path), f"Invalid YAML: {e}") from e
        except UnicodeDecodeError as e:
            raise ParseError(str(file_path), "File is not valid UTF-8") from e
        except OSError as e:
            raise ParseError(str(file_path), str(e)) from e
