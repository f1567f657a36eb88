import os
import signal
import logging
import threading
import numpy as np
from PIL import Image
from datetime import datetime
from argparse import ArgumentParser, SUPPRESS
from GA import ImageEvolutionTask, GeneticAlgorithm
from render import RENDERERS, get_renderer
from utils import load_target_image, resize_image, save_evolution_progress_as_gif
from config import (
    INPUT_DIR,
    OUTPUT_DIR,
    OUTPUT_FILENAME_SUFFIX,
    ANIMATION_IMAGE_WIDTH,
    ANIMATION_FILENAME_SUFFIX,
    ANIMATION_DURATION,
    DEFAULT_RUN_PARAMS,
    CANVAS_SIZE,
    TASK_PARAMS,
    RENDERER,
    GA_PARAMS
)

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = ArgumentParser(add_help=False, description='Approximate an image with triangles using a genetic algorithm.')
    required = parser.add_argument_group('required arguments')
    optional = parser.add_argument_group('optional arguments')

    optional.add_argument(
        '-h',
        '--help',
        action='help',
        default=SUPPRESS,
        help='show this help message and exit'
    )
    required.add_argument('-i', '--image_filename', required=True, type=str,
                          help=f'input image filename (must be placed in {INPUT_DIR}) directory')
    optional.add_argument('--n_iter', default=None, type=int,
                          help='number of algorithm iterations (generations)')
    optional.add_argument('--n_seconds', default=None, type=float,
                          help='duration of algorithm execution (in seconds)')
    optional.add_argument('--seed', default=DEFAULT_RUN_PARAMS['seed'], type=int,
                          help='random seed (runs with the same seed are reproducible)')
    optional.add_argument('--renderer', default=RENDERER, choices=sorted(RENDERERS),
                          help='renderer used for fitness evaluation')
    optional.add_argument('--n_workers', default=GA_PARAMS['n_workers'], type=int,
                          help='number of threads evaluating fitness in parallel')
    optional.add_argument('--resize', action='store_true',
                          help=f'resize the input image to {CANVAS_SIZE[0]}x{CANVAS_SIZE[1]} instead of failing '
                               'on a size mismatch')
    optional.add_argument('--no_animation', action='store_false', dest='animation',
                          help='do not save an evolution progress as a GIF animation')
    optional.add_argument('--img_history_step', default=DEFAULT_RUN_PARAMS['img_history_step'], type=int,
                          help='frequency at which algorithm outputs are included in the GIF animation'
                               '(e.g. 10 for every 10th iteration)')
    optional.add_argument('--log_level', default='INFO', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                          help='logging level')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    n_iter = args.n_iter
    n_seconds = args.n_seconds
    animation = args.animation
    img_history_step = args.img_history_step

    if args.n_iter is None and args.n_seconds is None:
        n_iter = DEFAULT_RUN_PARAMS['n_iter']

    if not animation:
        img_history_step = None

    input_img_array = load_target_image(os.path.join(INPUT_DIR, args.image_filename), CANVAS_SIZE, resize=args.resize)
    logger.info('Loaded target image %s (%dx%d)', args.image_filename, *CANVAS_SIZE)

    task = ImageEvolutionTask(input_img_array, renderer=get_renderer(args.renderer), **TASK_PARAMS)
    ga = GeneticAlgorithm(**{**GA_PARAMS, 'n_workers': args.n_workers, 'seed': args.seed})

    # Ctrl+C stops the evolution after the current generation
    stop_event = threading.Event()
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: stop_event.set())

    try:
        best_img, best_img_history, _, _ = ga.fit(
            task=task,
            n_iter=n_iter,
            n_seconds=n_seconds,
            img_history_step=img_history_step,
            stop_event=stop_event
        )
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    os.makedirs(OUTPUT_DIR, exist_ok=True)
    current_time = datetime.today().strftime('%Y-%m-%d_%H-%M')
    output_filename = f'{args.image_filename.split(".")[0]}_{OUTPUT_FILENAME_SUFFIX}_{current_time}.png'
    Image.fromarray(best_img).save(os.path.join(OUTPUT_DIR, output_filename))
    logger.info('Saved %s (fitness %d, similarity %.4f)', output_filename,
                ga.best().fitness, task.similarity(best_img))

    if animation and best_img_history:
        input_img_array_resized = resize_image(np.asarray(input_img_array), width=ANIMATION_IMAGE_WIDTH)

        animation_filename = f'{args.image_filename.split(".")[0]}_{ANIMATION_FILENAME_SUFFIX}_{current_time}.gif'
        save_evolution_progress_as_gif(
            img_history=best_img_history,
            original_img=input_img_array_resized,
            duration=ANIMATION_DURATION,
            output_path=os.path.join(OUTPUT_DIR, animation_filename)
        )
        logger.info('Saved %s', animation_filename)


if __name__ == '__main__':
    main()
