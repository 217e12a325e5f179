"""Config class shared by the chainstate components.

Example:
    import argparse
    import chainstate as cs

    parser = argparse.ArgumentParser("balances")
    cs.QueryBatcher.add_args(parser)
    cs.ChainConnector.add_args(parser)
    cs.logging.add_args(parser)
    config = cs.Config(parser)

    print(config.query.fetch_method)
"""

import argparse
import os
import sys
from copy import deepcopy
from typing import Any, Optional

import yaml
from munch import DefaultMunch, Munch

from chainstate.core.settings import DEFAULTS


class InvalidConfigFile(Exception):
    """Raised when there's an error loading the config file."""


class Config(DefaultMunch):
    """Nested namespace of settings, seeded from ``DEFAULTS`` and then overridden by a YAML file and CLI flags."""

    def __init__(
        self,
        parser: argparse.ArgumentParser = None,
        args: Optional[list[str]] = None,
        strict: bool = False,
        default: Any = DEFAULTS,
    ) -> None:
        default = deepcopy(default or DEFAULTS)
        if isinstance(default, Munch):
            default = default.toDict()
        # nested levels stay attribute accessible
        super().__init__(None, DefaultMunch.fromDict(default))

        if parser is None or os.getenv("CS_NO_PARSE_CLI_ARGS", "").lower() in (
            "1",
            "true",
            "yes",
            "on",
        ):
            return

        self._add_default_arguments(parser)
        args = sys.argv[1:] if args is None else args

        params = self._parse_args(args, parser, strict=False)
        config_path = getattr(params, "config", None)
        strict = strict or getattr(params, "strict", False)

        if config_path:
            self._load_config_file(parser, config_path)

        params = self._parse_args(args, parser, strict)
        self._build_config_tree(params)

    def __str__(self) -> str:
        return "\n" + yaml.dump(self.toDict(), sort_keys=False, default_flow_style=False)

    def __repr__(self) -> str:
        return self.__str__()

    @staticmethod
    def _load_config_file(parser: argparse.ArgumentParser, path: str) -> None:
        """Loads parser defaults from a YAML file."""
        try:
            with open(os.path.expanduser(path)) as f:
                config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise InvalidConfigFile(f"Error loading config: {e}") from e
        parser.set_defaults(**config)

    def _build_config_tree(self, params: DefaultMunch) -> None:
        """Turns dotted argument names into nested Config levels."""
        for key, value in params.items():
            current = self
            parts = key.split(".")
            for part in parts[:-1]:
                if not isinstance(current.get(part), dict):
                    current[part] = DefaultMunch()
                current = current[part]
            current[parts[-1]] = value

    @staticmethod
    def _parse_args(
        args: list[str], parser: argparse.ArgumentParser, strict: bool
    ) -> DefaultMunch:
        if strict:
            result = parser.parse_args(args)
        else:
            result, _ = parser.parse_known_args(args)
        return DefaultMunch.fromDict(vars(result))

    def __deepcopy__(self, memo) -> "Config":
        new_config = Config()
        new_config.clear()
        memo[id(self)] = new_config
        for key, value in self.items():
            new_config[key] = deepcopy(value, memo)
        return new_config

    def to_dict(self) -> dict:
        """Returns the configuration as a dictionary."""
        return self.toDict()

    @staticmethod
    def _add_default_arguments(parser: argparse.ArgumentParser) -> None:
        arguments = [
            (
                "--config",
                {
                    "type": str,
                    "help": "If set, defaults are overridden by passed file.",
                    "default": False,
                },
            ),
            (
                "--strict",
                {
                    "action": "store_true",
                    "help": "If flagged, config will check that only exact arguments have been set.",
                    "default": False,
                },
            ),
        ]

        for arg_name, kwargs in arguments:
            try:
                parser.add_argument(arg_name, **kwargs)
            except argparse.ArgumentError:
                # already registered by another component
                pass
