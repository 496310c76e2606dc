# UI deps imported only when running the app (see app.py)
import os
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

import requests
import pandas as pd
from prometheus_client import Counter, Gauge, start_http_server

# Streamlit imported only inside run_app to keep module import-safe
LOG_LEVEL = os.getenv('POKEMON_LOG_LEVEL', 'INFO')
logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
logger = logging.getLogger('pokemon')

# Read API config from environment variables with sensible defaults
api_config = {
    'base_url': os.getenv('POKEMON_API_BASE', 'https://pokeapi.co/api/v2').rstrip('/'),
    'list_limit': int(os.getenv('POKEMON_LIST_LIMIT', '20')),
    'timeout': float(os.getenv('POKEMON_HTTP_TIMEOUT', '10')),
    # 0 sizes the detail pool to the number of summaries
    'max_workers': int(os.getenv('POKEMON_MAX_WORKERS', '0')),
    'metrics_port': os.getenv('POKEMON_METRICS_PORT', ''),
}

REQUESTS_TOTAL = Counter('pokemon_api_requests_total', 'PokeAPI requests issued', ['endpoint'])
DROPPED_TOTAL = Counter('pokemon_dropped_total', 'Units of work dropped after a failure', ['kind'])
LAST_LOADED = Gauge('pokemon_last_loaded_records', 'Records delivered by the last aggregate load')

_metrics_lock = threading.Lock()
_metrics_started = False


class PokemonFetchError(Exception):
    kind = 'unknown'

    def __init__(self, url, detail=''):
        super().__init__(f"{self.kind}: {url} {detail}".rstrip())
        self.url = url
        self.detail = detail


class ListingRequestFailed(PokemonFetchError):
    kind = 'listing_request'


class DetailRequestFailed(PokemonFetchError):
    kind = 'detail_request'


class DetailParseFailed(PokemonFetchError):
    kind = 'detail_parse'


@dataclass(frozen=True)
class SummaryRecord:
    name: str
    detail_location: str


@dataclass(frozen=True)
class DetailRecord:
    name: str
    category: str
    image_location: str


def start_metrics_server(port):
    """Expose prometheus metrics on the given port. Only the first call starts a server."""
    global _metrics_started
    with _metrics_lock:
        if _metrics_started:
            return False
        start_http_server(int(port))
        _metrics_started = True
    logger.info('Metrics server listening on port %s', port)
    return True


def _get(url, error_cls):
    """GET a url. Raises error_cls on a transport error or a status other than 200."""
    try:
        resp = requests.get(url, timeout=api_config['timeout'])
    except requests.RequestException as e:
        raise error_cls(url, str(e)) from e
    if resp.status_code != 200:
        raise error_cls(url, f"status={resp.status_code}")
    return resp


def _drop(err):
    DROPPED_TOTAL.labels(kind=err.kind).inc()


# Function to fetch the first page of Pokémon references
def fetch_summaries(limit):
    """Fetch up to `limit` SummaryRecords from the listing endpoint.

    Any failure collapses to an empty list: callers cannot tell "the API is down"
    from "there are no Pokémon". The error is only visible in the logs and the
    `pokemon_dropped_total{kind="listing_request"}` counter.
    """
    if limit <= 0:
        return []
    url = f"{api_config['base_url']}/pokemon?limit={limit}"
    REQUESTS_TOTAL.labels(endpoint='listing').inc()
    try:
        resp = _get(url, ListingRequestFailed)
        try:
            summaries = []
            for r in resp.json()['results']:
                if not isinstance(r['name'], str) or not isinstance(r['url'], str):
                    raise TypeError(f"entry is not a name/url pair: {r!r}")
                summaries.append(SummaryRecord(name=r['name'], detail_location=r['url']))
            return summaries
        except (ValueError, KeyError, TypeError) as e:
            raise ListingRequestFailed(url, f"malformed body: {e!r}") from e
    except ListingRequestFailed as err:
        logger.error("Failed to fetch Pokémon list. %s", err)
        _drop(err)
        return []
    except Exception:
        logger.exception("Unexpected error fetching Pokémon list from %s", url)
        DROPPED_TOTAL.labels(kind='unexpected').inc()
        return []


def parse_details(name, data, url=''):
    """Build a DetailRecord from a detail body. Raises DetailParseFailed on a missing field or wrong shape."""
    try:
        types = data['types']
        if not isinstance(types, list):
            raise TypeError(f"types is {type(types).__name__}")
        category = ', '.join(t['type']['name'] for t in types)
        image = data['sprites']['front_default']
        if not isinstance(image, str):
            raise TypeError(f"front_default is {type(image).__name__}")
    except (KeyError, TypeError) as e:
        raise DetailParseFailed(url, repr(e)) from e
    return DetailRecord(name=name, category=category, image_location=image)


# Function to fetch details for a single Pokémon
def fetch_pokemon_details(summary):
    """Fetch and parse one detail record. Returns None on failure."""
    REQUESTS_TOTAL.labels(endpoint='detail').inc()
    url = summary.detail_location
    try:
        resp = _get(url, DetailRequestFailed)
        try:
            data = resp.json()
        except ValueError as e:
            raise DetailParseFailed(url, 'invalid json') from e
        return parse_details(summary.name, data, url)
    except PokemonFetchError as err:
        logger.warning("Dropping %s. %s", summary.name, err)
        _drop(err)
        return None


def fetch_details(summaries, on_complete=None, max_workers=None):
    """Fan out one detail request per summary and gather the results.

    All requests are submitted up front and drained in completion order, so the
    returned list is ordered first-resolved-first-collected. Failed entries are
    dropped. `on_complete` receives the final list exactly once, after every
    request has resolved.

    The pool gets one thread per summary unless `max_workers` (or the
    POKEMON_MAX_WORKERS setting) caps it, in which case requests beyond the cap
    wait for a free thread.
    """
    summaries = list(summaries)
    records = []
    if summaries:
        workers = min(len(summaries), max_workers or api_config['max_workers'] or len(summaries))
        with ThreadPoolExecutor(max_workers=max(workers, 1), thread_name_prefix='pokemon-detail') as pool:
            futures = {pool.submit(fetch_pokemon_details, s): s for s in summaries}
            for future in as_completed(futures):
                try:
                    record = future.result()
                except Exception:
                    logger.exception("Unexpected error fetching %s", futures[future].name)
                    DROPPED_TOTAL.labels(kind='unexpected').inc()
                    continue
                if record is not None:
                    records.append(record)
        logger.info('Collected %d of %d Pokémon details', len(records), len(summaries))
    if on_complete is not None:
        on_complete(records)
    return records


def load_pokemon_list(limit=None, on_result=None):
    """Load the first page of Pokémon as DetailRecords. Never raises; errors shrink the result."""
    if limit is None:
        limit = api_config['list_limit']
    records = fetch_details(fetch_summaries(limit))
    LAST_LOADED.set(len(records))
    if on_result is not None:
        on_result(records)
    return records


def load_pokemon_list_async(on_result, limit=None):
    """Run load_pokemon_list on a daemon thread; on_result is called once from that thread."""
    thread = threading.Thread(
        target=load_pokemon_list,
        kwargs={'limit': limit, 'on_result': on_result},
        name='pokemon-load',
        daemon=True,
    )
    thread.start()
    return thread


def records_to_frame(records):
    """Tabular view of the loaded records for display."""
    rows = [{'name': r.name, 'type': r.category, 'image': r.image_location} for r in records]
    return pd.DataFrame(rows, columns=['name', 'type', 'image'])


# Streamlit app
def run_app():
    """Start the Streamlit app UI. Imports Streamlit here to avoid side-effects on import."""
    import streamlit as st

    if api_config['metrics_port']:
        start_metrics_server(api_config['metrics_port'])

    st.title("Pokémon List")

    if st.button("Load Pokémon"):
        with st.spinner("Fetching Pokémon data..."):
            st.session_state['pokemon'] = load_pokemon_list()

    if 'pokemon' not in st.session_state:
        st.info("Click the button above to load Pokémon.")
        return

    records = st.session_state['pokemon']
    if not records:
        st.warning("No Pokémon could be loaded. Check the logs for request failures.")
        return

    for pokemon in records:
        image_col, text_col = st.columns([1, 4])
        with image_col:
            st.image(pokemon.image_location, width=80)
        with text_col:
            st.markdown(f"**{pokemon.name}**")
            st.caption(f"Type: {pokemon.category}")

    with st.expander("Raw data"):
        st.dataframe(records_to_frame(records))
