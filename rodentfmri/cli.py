"""
rodentfmri.cli
==============

Command line entry point (``rodentfmri``).

Examples
--------
Run the configured stages for every subject of a study::

    rodentfmri run study.json --report cohort.tsv

Denoise a single run with Friston-24 motion regression and band-pass::

    rodentfmri denoise swrasrest_inmask.nii brain_mask.nii out/ \\
        --motion rp_asrest.txt --band 0.01 0.08
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

import numpy as np

from .connectivity import find_gretna_edges, roi_fc, roi_fc_from_masks, voxel_fc
from .denoising import DenoiseConfig, denoise_file
from .exceptions import RodentFMRIError
from .io import save_matrix_txt, scale_voxel_size
from .metrics import alff_file, reho_file
from .motion import framewise_displacement, load_motion_parameters, summarize_motion
from .pipeline import DEFAULT_STAGES, PipelineConfig, run_cohort


logger = logging.getLogger(__name__)


def _add_band(parser: argparse.ArgumentParser, default=None) -> None:
    parser.add_argument('--band', type=float, nargs=2, metavar=('LOW', 'HIGH'), default=default,
                        help='Band-pass range in Hz')


def _cmd_run(args: argparse.Namespace) -> int:
    config = PipelineConfig.from_json(args.config)
    report = run_cohort(config, args.stages)
    if args.report:
        report.save(args.report)
    print(report.to_frame().to_string(index=False))
    return 0 if not report.failed else 1


def _cmd_denoise(args: argparse.Namespace) -> int:
    config = DenoiseConfig(
        tr=args.tr,
        band=tuple(args.band) if args.band else None,
        motion_model=args.covmod,
        add_mean_back=not args.no_add_mean,
        detrend=not args.no_detrend,
        fd_threshold=args.fd_threshold,
    )
    out = denoise_file(args.func, args.mask, args.outdir, config, args.motion, args.wm, args.csf, args.output_name)
    print(out)
    return 0


def _cmd_alff(args: argparse.Namespace) -> int:
    for path in alff_file(args.func, args.mask, args.outdir, tr=args.tr, band=tuple(args.band)).values():
        print(path)
    return 0


def _cmd_reho(args: argparse.Namespace) -> int:
    written = reho_file(args.func, args.mask, args.outdir, cluster_size=args.cluster_size, smooth_fwhm=args.fwhm)
    for path in written.values():
        print(path)
    return 0


def _cmd_roifc(args: argparse.Namespace) -> int:
    if args.atlas:
        conn = roi_fc(args.func, args.atlas, args.outdir, prefix=args.name or '')
    else:
        conn = roi_fc_from_masks(args.func, args.masks, args.outdir, name=args.name or 'subject')
    print(f'{len(conn.labels)} ROIs written to {args.outdir}')
    return 0


def _cmd_voxelfc(args: argparse.Namespace) -> int:
    result = voxel_fc(args.func, args.brain_mask, args.seed, args.outdir)
    for path in result.outputs:
        print(path)
    return 0


def _cmd_fd(args: argparse.Namespace) -> int:
    params = load_motion_parameters(args.motion)
    summary = summarize_motion(params, args.threshold)
    if args.output:
        save_matrix_txt(framewise_displacement(params)[:, np.newaxis], args.output)
    print(f'max translation (mm): {summary.max_translation:.4f}')
    print(f'max rotation (deg):   {summary.max_rotation_deg:.4f}')
    print(f'mean FD:              {summary.mean_fd:.4f}')
    if summary.n_frames_over_threshold is not None:
        print(f'frames over {args.threshold:g}:    {summary.n_frames_over_threshold}')
    return 0


def _cmd_edges(args: argparse.Namespace) -> int:
    edges = find_gretna_edges(args.result_dir)
    if args.output:
        edges.to_csv(args.output, sep='\t', index=False)
    print(edges.to_string(index=False))
    return 0


def _cmd_scale(args: argparse.Namespace) -> int:
    print(scale_voxel_size(args.image, args.factor, args.output))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='rodentfmri', description="Rodent resting-state fMRI pipeline")
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('run', help='Run pipeline stages for a cohort')
    p.add_argument('config', help='JSON configuration file')
    p.add_argument('--stages', nargs='+', choices=DEFAULT_STAGES, default=None)
    p.add_argument('--report', help='Write a per-subject TSV report')
    p.set_defaults(func_=_cmd_run)

    p = sub.add_parser('denoise', help='Detrend, regress covariates, filter and scrub one run')
    p.add_argument('func')
    p.add_argument('mask')
    p.add_argument('outdir')
    p.add_argument('--tr', type=float, default=None)
    _add_band(p)
    p.add_argument('--motion', help='Realignment parameter file (rp_*.txt)')
    p.add_argument('--covmod', type=int, choices=(1, 2, 3, 4), default=4, help='Motion covariate model')
    p.add_argument('--no-add-mean', action='store_true', help='Do not add the mean back')
    p.add_argument('--no-detrend', action='store_true')
    p.add_argument('--fd-threshold', type=float, default=None)
    p.add_argument('--wm', help='White matter mask')
    p.add_argument('--csf', help='CSF mask')
    p.add_argument('--output-name', default='denoised_rest.nii')
    p.set_defaults(func_=_cmd_denoise)

    p = sub.add_parser('alff', help='ALFF and fALFF maps')
    p.add_argument('func')
    p.add_argument('mask')
    p.add_argument('outdir')
    p.add_argument('--tr', type=float, default=None)
    _add_band(p, default=[0.01, 0.08])
    p.set_defaults(func_=_cmd_alff)

    p = sub.add_parser('reho', help='Regional homogeneity maps')
    p.add_argument('func')
    p.add_argument('mask')
    p.add_argument('outdir')
    p.add_argument('--cluster-size', type=int, choices=(7, 19, 27), default=27)
    p.add_argument('--fwhm', type=float, nargs=3, default=None, help='Smoothing FWHM in mm')
    p.set_defaults(func_=_cmd_reho)

    p = sub.add_parser('roifc', help='ROI-wise connectivity matrices')
    p.add_argument('func')
    p.add_argument('outdir')
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument('--atlas', help='Label atlas')
    group.add_argument('--masks', nargs='+', help='Seed mask files')
    p.add_argument('--name', help='Name used in the output file names')
    p.set_defaults(func_=_cmd_roifc)

    p = sub.add_parser('voxelfc', help='Seed-to-voxel connectivity map')
    p.add_argument('func')
    p.add_argument('brain_mask')
    p.add_argument('seed')
    p.add_argument('outdir')
    p.set_defaults(func_=_cmd_voxelfc)

    p = sub.add_parser('fd', help='Head motion summary and framewise displacement')
    p.add_argument('motion')
    p.add_argument('--threshold', type=float, default=None)
    p.add_argument('--output', help='Write FD per volume to this text file')
    p.set_defaults(func_=_cmd_fd)

    p = sub.add_parser('edges', help='Significant edges from a GRETNA result folder')
    p.add_argument('result_dir')
    p.add_argument('--output', help='Write the edges as TSV')
    p.set_defaults(func_=_cmd_edges)

    p = sub.add_parser('scale', help='Multiply the voxel size of an image')
    p.add_argument('image')
    p.add_argument('--factor', type=float, default=10.0)
    p.add_argument('--output', default=None)
    p.set_defaults(func_=_cmd_scale)
    return parser


def parse_args(args: List[str]) -> argparse.Namespace:
    return build_parser().parse_args(args)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    try:
        return args.func_(args)
    except (RodentFMRIError, OSError) as e:
        logger.error('%s', e)
        return 2


if __name__ == '__main__':
    sys.exit(main())
