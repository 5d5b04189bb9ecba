"""
COMMAND-LINE ENTRY POINT

USAGE:
    caffe2-predictor models [--all]
    caffe2-predictor download MODEL [--manifest PATH]
    caffe2-predictor predict MODEL IMAGE [--top-k N] [--manifest PATH]

Exit status is 0 on success and 1 on any predictor error.
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from loguru import logger

from . import config
from .builtin import ModelCatalog
from .errors import ManifestError, PredictorError
from .manifest import ModelManifest
from .predictor import ImagePredictor


def _resolve_manifest(args: argparse.Namespace, catalog: ModelCatalog) -> ModelManifest:
    if args.manifest:
        return ModelManifest.from_yaml_file(args.manifest)
    manifest = catalog.get(args.model)
    if manifest is None:
        raise ManifestError(f"unknown model {args.model!r}")
    return manifest


def _cmd_models(args: argparse.Namespace, catalog: ModelCatalog) -> int:
    for manifest in catalog.list_models(include_hidden=args.all):
        hidden = " (hidden)" if manifest.hidden else ""
        print(f"{manifest.name}\t{manifest.version}\t{manifest.framework.name}{hidden}")
    return 0


def _cmd_download(args: argparse.Namespace, catalog: ModelCatalog) -> int:
    predictor = ImagePredictor.new(_resolve_manifest(args, catalog))
    asyncio.run(predictor.download())
    print(predictor.work_dir)
    return 0


def _cmd_predict(args: argparse.Namespace, catalog: ModelCatalog) -> int:
    predictor = ImagePredictor.new(_resolve_manifest(args, catalog))
    asyncio.run(predictor.download())
    with predictor:
        features = predictor.predict_image(args.image, top_k=args.top_k)
    print(json.dumps([f.to_dict() for f in features], indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="caffe2-predictor",
        description="Caffe2 image-classification predictor",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    models = sub.add_parser("models", help="List built-in models")
    models.add_argument("--all", action="store_true", help="Include hidden models")
    models.set_defaults(func=_cmd_models)

    download = sub.add_parser("download", help="Download model artifacts")
    download.add_argument("model", help="Built-in model name")
    download.add_argument("--manifest", help="Use this manifest file instead of the catalog")
    download.set_defaults(func=_cmd_download)

    predict = sub.add_parser("predict", help="Classify an image")
    predict.add_argument("model", help="Built-in model name")
    predict.add_argument("image", help="Path to the image file")
    predict.add_argument("--top-k", type=int, default=5, help="Number of features to print")
    predict.add_argument("--manifest", help="Use this manifest file instead of the catalog")
    predict.set_defaults(func=_cmd_predict)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = config.init()
    catalog = ModelCatalog(settings.builtin_models_dir)

    try:
        return args.func(args, catalog)
    except PredictorError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
