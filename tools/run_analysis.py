import argparse
import asyncio
import json
import sys
from pathlib import Path


def _add_backend_to_path() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    backend_root = repo_root / "backend"
    if str(backend_root) not in sys.path:
        sys.path.insert(0, str(backend_root))


def _collect_inputs(paths: list[str]) -> list[Path]:
    inputs: list[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            inputs.extend(sorted(p for p in path.iterdir() if p.is_file()))
        else:
            inputs.append(path)
    return inputs


async def _run(args: argparse.Namespace) -> int:
    from cad_analyzer.config import configure_logging, reload_config  # type: ignore
    from cad_analyzer.interfaces import CADAnalyzerError  # type: ignore
    from cad_analyzer.models import AnalysisOptions, AnalysisType, Precision  # type: ignore
    from cad_analyzer.pipeline import AnalysisPipeline  # type: ignore

    config = reload_config(args.config) if args.config else reload_config()
    configure_logging(config)
    config.ensure_dirs()
    pipeline = AnalysisPipeline(config)

    inputs = _collect_inputs(args.paths)
    if not inputs:
        print("未找到可处理文件")
        return 1

    options = AnalysisOptions(domain_model=args.domain or None)
    failures = 0
    for path in inputs:
        try:
            result = await pipeline.analyze(
                path.name,
                path.read_bytes(),
                precision=Precision(args.precision),
                analysis_type=AnalysisType(args.analysis_type),
                options=options,
            )
        except CADAnalyzerError as exc:
            failures += 1
            print(f"{path.name}: {exc.code} {exc.message}")
            continue

        if args.json:
            print(json.dumps(result.model_dump(by_alias=True, mode="json"), ensure_ascii=False, indent=2))
        else:
            print(
                f"{path.name}: entities={result.entities.total} layers={len(result.layers)} "
                f"complexity={result.complexity_score} confidence={result.confidence}"
            )

    return 1 if failures else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the CAD analysis pipeline on local files.")
    parser.add_argument("paths", nargs="+", help="CAD文件或目录")
    parser.add_argument("--config", default="", help="运行期配置YAML（默认：config/cad_analyzer.yaml）")
    parser.add_argument("--precision", default="standard", choices=["low", "standard", "high"])
    parser.add_argument(
        "--analysis-type",
        default="standard",
        choices=["standard", "detailed", "professional", "measurement"],
    )
    parser.add_argument("--domain", default="", help="领域模型（electrical/mechanical/architectural/plumbing）")
    parser.add_argument("--json", action="store_true", help="输出完整JSON结果")
    args = parser.parse_args()

    _add_backend_to_path()
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
