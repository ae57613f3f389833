"""CLI interface for ComfyUI container provisioning."""
import sys
import logging
import argparse
from pathlib import Path
from typing import List, Optional

from comfy_provision import __version__
from comfy_provision.domain.exceptions import (
    ConfigurationError,
    DomainException,
    FetchError,
    HostProvisioningError,
    ImageBuildError,
    InstallError,
    ProvisioningCancelled,
)
from comfy_provision.domain.models import (
    EXIT_CONFIG_ERROR,
    EXIT_INTERRUPTED,
    EXIT_PROVISIONING_FAILED,
    RunSummary,
)
from comfy_provision.application.factories import (
    create_batch_runner,
    create_bootstrapper,
    create_build_orchestrator,
)
from comfy_provision.infrastructure.config import ConfigLoader, SanityConfig
from comfy_provision.infrastructure.manifest import ManifestLoader
from comfy_provision.infrastructure.pip import filter_requirements
from comfy_provision.shared.cancellation import CancellationToken, install_signal_handlers
from comfy_provision.shared.logging import ROOT_LOGGER, add_file_handler, setup_logger, get_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="comfy-provision",
        description="Provision, sanity-check and build ComfyUI inference containers",
    )
    parser.add_argument('--config', type=Path, help='Config YAML file (default: ./config.yaml)')
    parser.add_argument('--env-file', type=Path, help='.env file (default: ./.env)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose')
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest='command', required=True)

    sanity = sub.add_parser('sanity', help='Clone, install and import-probe custom nodes from a manifest')
    sanity.add_argument('--manifest-path', type=Path, help='Local manifest file (preferred over --manifest-url)')
    sanity.add_argument('--manifest-url', help='HTTP(S) manifest URL')
    sanity.add_argument('--constraints', type=Path, dest='constraints_path', help='pip constraints file')
    sanity.add_argument('--comfy-ref', help='ComfyUI git ref (tag/branch/commit)')
    sanity.add_argument('--work-root', type=Path, help='Scratch root for run/ and logs/ (default: /workspace)')
    sanity.add_argument('--fetch-workers', type=int, help='Parallel clones (default: 1)')
    sanity.add_argument('--python', dest='python_bin', help='Interpreter used for pip and import probes')
    sanity.add_argument('--no-pip-check', action='store_true', help='Skip the final pip check')

    build = sub.add_parser('build', help='Build the inference image with docker buildx')
    build.add_argument('--image', help='Image repository (default: markwelshboy/comfyui-inference)')
    build.add_argument('--tag', help='Image tag (default: latest)')
    build.add_argument('--platform', help='Target platform (default: linux/amd64)')
    build.add_argument('--no-push', action='store_true', help='Do not push; load into local docker')
    build.add_argument('--load', action='store_true', help='Load into local docker (implies --no-push)')
    build.add_argument('--no-cache', action='store_true', help='Build without cache')
    build.add_argument('--prune', action='store_true', help='Prune containers, images and build cache first')
    build.add_argument('--prune-hard', action='store_true', help='docker system prune -af first (dangerous)')
    build.add_argument('--image-version', help='IMAGE_VERSION build arg')
    build.add_argument('--build-date', help='BUILD_DATE build arg (default: now, UTC)')
    build.add_argument('--vcs-ref', help='VCS_REF build arg (default: git rev-parse --short HEAD)')
    build.add_argument('--torch', dest='torch_ver', help='TORCH_VER pin')
    build.add_argument('--torchvision', dest='torchvision_ver', help='TORCHVISION_VER pin')
    build.add_argument('--torch-index', help='TORCH_INDEX wheel index')
    build.add_argument('--comfy-ref', help='COMFYUI_REF build arg')
    build.add_argument('--build-arg', action='append', dest='extra_build_args', metavar='KEY=VALUE',
                       help='Extra build arg (repeatable)')
    build.add_argument('--context', type=Path, dest='context_dir', help='Build context (default: .)')
    build.add_argument('--sudo', action='store_true', help='Run docker through sudo')
    build.add_argument('--dry-run', action='store_true', help='Print the build command without running it')

    start = sub.add_parser('start', help='Container entrypoint: sync the runtime repo and exec its start.sh')
    start.add_argument('--runtime-repo', dest='runtime_repo_url', help='Runtime repo URL')
    start.add_argument('--runtime-dir', type=Path, help='Runtime checkout directory')

    filt = sub.add_parser('filter-requirements', help='Drop packages from a requirements file')
    filt.add_argument('requirements', type=Path, help='Input requirements file')
    filt.add_argument('--output', '-o', type=Path, required=True, help='Filtered requirements file')
    filt.add_argument('--exclude', nargs='+', default=['torch', 'torchvision', 'torchaudio'],
                      help='Package names to drop (default: torch torchvision torchaudio)')

    return parser


def log_sanity_banner(logger: logging.Logger, config: SanityConfig) -> None:
    logger.info("=" * 60)
    logger.info("ComfyUI custom node sanity check")
    logger.info(f"COMFY_REF: {config.comfy_ref}")
    logger.info(f"MANIFEST_PATH: {config.manifest_path or '(unset)'}")
    logger.info(f"MANIFEST_URL: {config.manifest_url or '(unset)'}")
    logger.info(f"CONSTRAINTS_PATH: {config.constraints_path or '(unset)'}")
    logger.info(f"WORKROOT: {config.work_root}")
    logger.info(f"Fetch workers: {config.fetch_workers}")
    logger.info("=" * 60)


def log_run_summary(logger: logging.Logger, summary: RunSummary) -> None:
    logger.info("=" * 60)
    logger.info("Sanity summary")
    logger.info(f"  clone failures: {summary.fetch_failures}")
    if summary.failed_fetch_names:
        logger.info(f"    {', '.join(summary.failed_fetch_names)}")
    logger.info(f"  requirements failures: {summary.install_failures}")
    if summary.failed_install_names:
        logger.info(f"    {', '.join(summary.failed_install_names)}")
    logger.info(f"  custom_nodes total: {summary.plugin_total}")
    logger.info(f"  import warnings: {summary.import_warnings}")
    if summary.warned_names:
        logger.info(f"    warn list: {', '.join(summary.warned_names)}")
    if summary.core_import_ok is False:
        logger.info("  ComfyUI core import: failed (informational)")
    if summary.pip_check_ok is False:
        logger.info("  pip check: conflicts (informational)")
    for phase, seconds in summary.timings.items():
        logger.info(f"  {phase}: {seconds:.1f}s")
    logger.info(f"  logs: {summary.log_dir}")
    logger.info("=" * 60)

    if summary.success:
        logger.info("✅ Sanity check passed")
    else:
        logger.error("❌ Sanity check failed (clone/requirements failures)")


def run_sanity(args: argparse.Namespace, loader: ConfigLoader, cancel: CancellationToken) -> int:
    logger = get_logger(__name__)
    config = loader.load_sanity(overrides={
        'manifest_path': args.manifest_path,
        'manifest_url': args.manifest_url,
        'constraints_path': args.constraints_path,
        'comfy_ref': args.comfy_ref,
        'work_root': args.work_root,
        'fetch_workers': args.fetch_workers,
        'python_bin': args.python_bin,
        'run_pip_check': False if args.no_pip_check else None,
    })
    config.check_files()

    config.log_dir.mkdir(parents=True, exist_ok=True)
    add_file_handler(logging.getLogger(ROOT_LOGGER), config.log_dir / "sanity.log")
    log_sanity_banner(logger, config)

    manifest = ManifestLoader(config.work_root).load(path=config.manifest_path, url=config.manifest_url)
    runner = create_batch_runner(config, cancel=cancel)
    summary = runner.run(manifest)
    log_run_summary(logger, summary)
    return summary.exit_code


def run_build(args: argparse.Namespace, loader: ConfigLoader) -> int:
    config = loader.load_build(overrides={
        'image': args.image,
        'tag': args.tag,
        'platform': args.platform,
        'push': False if args.no_push else None,
        'load': True if args.load else None,
        'no_cache': True if args.no_cache else None,
        'prune': True if args.prune else None,
        'prune_hard': True if args.prune_hard else None,
        'image_version': args.image_version,
        'build_date': args.build_date,
        'vcs_ref': args.vcs_ref,
        'torch_ver': args.torch_ver,
        'torchvision_ver': args.torchvision_ver,
        'torch_index': args.torch_index,
        'comfy_ref': args.comfy_ref,
        'extra_build_args': args.extra_build_args,
        'context_dir': args.context_dir,
        'use_sudo': True if args.sudo else None,
        'dry_run': True if args.dry_run else None,
    })
    create_build_orchestrator(config).run(config)
    return 0


def run_start(args: argparse.Namespace, loader: ConfigLoader, exec_fn=None) -> int:
    config = loader.load_startup(overrides={
        'runtime_repo_url': args.runtime_repo_url,
        'runtime_dir': args.runtime_dir,
    })
    create_bootstrapper(config, exec_fn=exec_fn).run()
    return 0


def run_filter(args: argparse.Namespace) -> int:
    if not args.requirements.is_file():
        raise ConfigurationError(f"Requirements file not found: {args.requirements}")
    text = args.requirements.read_text(encoding="utf-8")
    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(filter_requirements(text, args.exclude), encoding="utf-8")
    get_logger(__name__).info(f"Wrote {args.output} (removed {', '.join(args.exclude)})")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    setup_logger(ROOT_LOGGER, level=log_level)
    logger = get_logger(__name__)

    try:
        loader = ConfigLoader(config_path=args.config, env_file=args.env_file)
        if args.command == 'sanity':
            cancel = CancellationToken()
            install_signal_handlers(cancel)
            return run_sanity(args, loader, cancel)
        if args.command == 'build':
            return run_build(args, loader)
        if args.command == 'filter-requirements':
            return run_filter(args)
        return run_start(args, loader)

    except ProvisioningCancelled as e:
        logger.warning(f"Interrupted: {e}")
        return EXIT_INTERRUPTED
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR
    except (HostProvisioningError, ImageBuildError, FetchError, InstallError) as e:
        logger.error(f"Provisioning error: {e}")
        return EXIT_PROVISIONING_FAILED
    except DomainException as e:
        logger.error(f"Error: {e}")
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception(f"Error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
