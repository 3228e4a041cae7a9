# orbctl

A Python library of building blocks for CI tooling. It parses orb
references such as `namespace/orb@version`, expands `<<include(file)>>`
statements, merges a directory of YAML files into one mapping, stores the
user's API host and token in `~/.circleci/cli.yml`, inspects the local git
repository, prepares local runs of the build-agent container, and checks for
newer releases of the tool.

## Installation

```
pip install .
```

Running the test suite needs the `test` extra:

```
pip install ".[test]"
pytest
```

## Modules

- `orbctl.references`: `split_into_orb_and_namespace`,
  `split_into_orb_namespace_and_version`, `is_dev_version` and
  `is_orb_ref_with_optional_version`. Malformed references raise `ValueError`.
- `orbctl.process`: `maybe_include_file(s, orb_directory)` returns the
  contents of the included file with every `<<` escaped as `\<<`, or `s`
  unchanged when it holds no include statement.
- `orbctl.filetree`: `new_tree(root_path, *allowed_directories)` builds a
  `Node` tree of the YAML files under a directory (dotfiles and dot-folders
  are skipped); `Node.marshal_yaml()` merges it into one nested mapping.
- `orbctl.settings`: `Config` (`load`, `load_from_disk`, `write_to_disk`,
  `load_from_env`, `with_http_client`) and `UpdateCheck` (`load`,
  `write_to_disk`). Files are created with mode `0600`; a TLS certificate
  path is refused if it or a parent directory is world-writable.
- `orbctl.git`: `find_remote`, `infer_project_from_git_remotes`, `branch`,
  `revision` and `tag`, running `git` as a subprocess.
- `orbctl.pipeline`: `fabricated_values()` builds stand-in pipeline values
  from the local repository; `prepare_for_graphql` turns a mapping into
  `KeyVal` pairs sorted by key.
- `orbctl.local`: `parse_flags`, `build_agent_arguments`,
  `generate_docker_command`, and helpers that pull the build-agent image with
  `docker` and record its digest.
- `orbctl.update`: `check_for_updates` against the GitHub releases API or
  `brew outdated`, `parse_homebrew_version`, `report_version`,
  `how_to_update`.
- `orbctl.update_command`: `update_cli(config, dry_run)` prints what is
  available and, unless `dry_run`, downloads the release and replaces the
  running executable.
- `orbctl.proxy`: `exec_agent(command, args)` replaces the current process
  with `circleci-agent`.
- `orbctl.prompt`: terminal questions (`read_string_from_user`,
  `read_secret_string_from_user`, `ask_user_to_confirm`).
- `orbctl.version`: `VERSION`, `COMMIT`, `package_manager()`, `user_agent()`.

## Examples

```python
from orbctl.references import split_into_orb_namespace_and_version

namespace, orb, version = split_into_orb_namespace_and_version("foo/bar@1.2.3")
```

```python
from orbctl.git import find_remote

remote = find_remote("https://github.com/apple/pear.git")
print(remote.vcs_type, remote.organization, remote.project)
```

```python
from orbctl.filetree import new_tree

tree = new_tree("src")          # a directory of YAML files
print(tree.marshal_yaml())      # merged into one nested mapping
```

```python
from orbctl.settings import Config

config = Config()
config.load()                   # ~/.circleci/cli.yml, then CIRCLECI_CLI_* variables
config.token = "token"
config.write_to_disk()
```

Errors are reported as exceptions (`GitError`, `SettingsError`,
`FileTreeError`, `LocalError`, `UpdateError`, `ProxyError`, or `ValueError`
for malformed references).

## What it does not do

- There is no command-line program: the package installs no command, and
  there is no `setup` or `version` command. Settings are read and written
  through `orbctl.settings.Config` instead.
- There is no client for the CI service's API. A local build can be
  prepared (flags, docker command line, build-agent image), but the package
  does not process a configuration through the service before running it.