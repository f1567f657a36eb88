INPUT_DIR = './inputs'
OUTPUT_DIR = './outputs'
OUTPUT_FILENAME_SUFFIX = 'evolved'
ANIMATION_IMAGE_WIDTH = 240
ANIMATION_FILENAME_SUFFIX = 'evolution_progress'
ANIMATION_DURATION = 15

DEFAULT_RUN_PARAMS = {
    'n_iter': 1000,
    'img_history_step': 10,
    'seed': None
}

CANVAS_SIZE = (512, 512)

TASK_PARAMS = {
    'n_triangles': 150,
    'opacity': 0.15
}

RENDERER = 'pillow'

GA_PARAMS = {
    'population_size': 30,
    'elite_fraction': 0.25,
    'crossover_rate': 0.95,
    'one_point_rate': 0.5,
    'disturb_rate': 0.95,
    'disturb_scale': 500,
    'n_workers': None
}
