"""
Tests for the craftus CLI - help output and a mocked end-to-end generate run.
"""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from click.testing import CliRunner
from PIL import Image

from craftus.cli.main import cli
from craftus.core.config import Config
from craftus.dependencies import CraftDependencies
from craftus.services.api_client import RetryingApiClient
from craftus.services.gemini_service import GeminiService
from craftus.services.models import AnalysisStep, DissectionResult
from craftus.services.rate_limiter import RateLimiter


def _deps(clock, image):
    gemini = MagicMock(spec=GeminiService)
    gemini.generate_image = AsyncMock(return_value=image)
    gemini.identify_object = AsyncMock(return_value="Paper crane")
    gemini.dissect_image = AsyncMock(return_value=DissectionResult(
        complexity="Simple",
        complexity_score=2,
        materials=["Origami paper"],
        steps=[
            AnalysisStep(step_number=1, title="Fold", description="Fold diagonally"),
            AnalysisStep(step_number=2, title="Shape", description="Shape the wings"),
        ],
    ))
    return CraftDependencies(
        gemini=gemini,
        api_client=RetryingApiClient(RateLimiter(100, 60.0), clock=clock),
        clock=clock,
    )


class TestCraftCLIHelp:

    def test_craft_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ['craft', '--help'])

        assert result.exit_code == 0
        assert 'generate' in result.output
        assert 'describe' in result.output

    def test_generate_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ['craft', 'generate', '--help'])

        assert result.exit_code == 0
        assert '--category' in result.output
        assert '--dissect' in result.output
        assert '--selection' in result.output

    def test_describe_lists_nodes(self):
        runner = CliRunner()
        result = runner.invoke(cli, ['craft', 'describe'])

        assert result.exit_code == 0
        assert 'GenerateMasterNode' in result.output
        assert 'GenerateStepImagesNode' in result.output

    def test_describe_estimates_calls_per_run(self):
        runner = CliRunner()
        result = runner.invoke(cli, ['craft', 'describe', '--max-step-images', '3'])

        assert result.exit_code == 0
        assert 'Up to 1 call(s) per run' in result.output
        assert 'Up to 5 call(s) per run' in result.output
        assert 'Gemini 2.5 Flash: PrepareReferenceNode, AnalyzeNode' in result.output

    def test_unknown_category_rejected(self):
        runner = CliRunner()
        result = runner.invoke(cli, ['generate', 'owl', '--category', 'Pottery'])

        assert result.exit_code != 0


class TestCraftCLIGenerate:

    def test_missing_api_key(self):
        runner = CliRunner()
        with patch.object(Config, 'GEMINI_API_KEY', ''):
            result = runner.invoke(cli, ['generate', 'paper crane', '-c', 'Papercraft'])

        assert result.exit_code == 1
        assert 'GEMINI_API_KEY' in result.output

    def test_generate_and_dissect(self, clock, make_png):
        deps = _deps(clock, make_png(16, 16))
        runner = CliRunner()

        with runner.isolated_filesystem():
            with patch.object(Config, 'GEMINI_API_KEY', 'test-key'), \
                    patch.object(CraftDependencies, 'create', return_value=deps):
                result = runner.invoke(cli, [
                    'craft', 'generate', 'paper crane',
                    '--category', 'papercraft',
                    '--dissect',
                    '--output-dir', 'out',
                    '--output-json', 'nodes.json',
                ])

            assert result.exit_code == 0, result.output
            assert 'Origami paper' in result.output
            assert sorted(p.name for p in Path('out').iterdir()) == [
                'master.png', 'step-01.png', 'step-02.png',
            ]
            snapshot = json.loads(Path('nodes.json').read_text())
            assert len(snapshot['nodes']) == 4

    def test_selection_is_scaled_to_master(self, clock, make_png):
        deps = _deps(clock, make_png(16, 16))
        runner = CliRunner()

        with runner.isolated_filesystem():
            cutout = Image.new('RGBA', (8, 8), (0, 0, 0, 0))
            for x in range(2, 6):
                for y in range(2, 6):
                    cutout.putpixel((x, y), (255, 255, 255, 255))
            cutout.save('selection.png')

            with patch.object(Config, 'GEMINI_API_KEY', 'test-key'), \
                    patch.object(CraftDependencies, 'create', return_value=deps):
                result = runner.invoke(cli, [
                    'generate', 'paper crane', '-c', 'Papercraft',
                    '--dissect', '--selection', 'selection.png',
                ])

        assert result.exit_code == 0, result.output
        deps.gemini.identify_object.assert_awaited_once()
        images = deps.gemini.dissect_image.await_args.args[0]
        assert len(images) == 2

    def test_master_failure_exits_nonzero(self, clock):
        deps = _deps(clock, None)
        deps.gemini.generate_image.side_effect = ValueError("blocked")
        runner = CliRunner()

        with patch.object(Config, 'GEMINI_API_KEY', 'test-key'), \
                patch.object(CraftDependencies, 'create', return_value=deps):
            result = runner.invoke(cli, ['generate', 'paper crane', '-c', 'Papercraft'])

        assert result.exit_code == 1
        assert 'generate_master' in result.output
